"""Paced bulk email sender.

This package accepts a recipient list, a subject, a body and an optional
attachment, and sends one email per recipient through an SMTP relay:

- Strictly serial sends with a fixed pacing delay between them
- Per-recipient outcome report; one failure never aborts the batch
- Attachment upload stored once and reused for every recipient
- FastAPI HTTP endpoint, click CLI and Prometheus metrics

Example:
    Serving the HTTP API::

        from bulk_mailer.bootstrap import build_app
        from bulk_mailer.config import load_settings

        app = build_app(load_settings("config.ini"))

Authors:
    Softwell S.r.l.
"""
