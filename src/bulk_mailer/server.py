# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""ASGI application entry point for uvicorn.

Settings are read once at import time, from ``$BULK_MAILER_CONFIG`` (or
``config.ini``), the environment and ``.env``.

Usage:
    uvicorn bulk_mailer.server:app --host 0.0.0.0 --port 3000
"""

from .bootstrap import build_app
from .config import load_settings
from .logger import configure_logging

_settings = load_settings()
configure_logging(_settings.log_level)

app = build_app(_settings)
