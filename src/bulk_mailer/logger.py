"""Logging helpers for the bulk mailer.

Modules only ask for a named logger here. Level, handlers and format are set
once by the entry point through :func:`configure_logging`, so importing the
package never installs handlers on its own.

Example:
    Typical usage in a module::

        from bulk_mailer.logger import get_logger

        logger = get_logger("BulkMailer.core")
        logger.info("Batch finished")
"""

import logging

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def get_logger(name: str = "BulkMailer") -> logging.Logger:
    """Return the standard library logger bound to ``name``.

    No handler is attached here; that is the entry point's job.
    """
    return logging.getLogger(name)


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger for a process entry point.

    Unknown level names fall back to ``INFO``. ``force=True`` replaces any
    handler installed earlier (uvicorn reloads, repeated CLI invocations).
    """
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
        force=True,
    )
