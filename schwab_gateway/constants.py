from __future__ import annotations

import logging

LOGGER = logging.getLogger("schwab_gateway")
APP_VERSION = "0.1.0"

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 4000
PRODUCTION_ENVIRONMENTS = {"production", "prod"}
REQUIRED_ENV = (
    "SCHWAB_CLIENT_ID",
    "SCHWAB_CLIENT_SECRET",
    "SCHWAB_REDIRECT_URI",
)
