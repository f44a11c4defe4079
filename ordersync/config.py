"""Centralized configuration for the order sync engine.

Re-exports everything from ordersync.infrastructure.settings, then adds typed
constants for the database, the oracle, and the sync pipeline.  Environment
variable overrides use safe defaults so the engine runs without extra env
configuration.
"""

from __future__ import annotations

import os

from ordersync.infrastructure.settings import *  # noqa: F401, F403

# --- App ---
APP_VERSION: str = "0.3.0"

# --- Database ---
DB_POOL_SIZE: int = int(os.getenv("ORDERSYNC_DB_POOL_SIZE", "5"))
DB_POOL_TIMEOUT: float = float(os.getenv("ORDERSYNC_DB_POOL_TIMEOUT", "5.0"))
DB_CONNECT_TIMEOUT: float = float(os.getenv("ORDERSYNC_DB_CONNECT_TIMEOUT", "30.0"))
DB_TEMP_CONN_MAX: int = int(os.getenv("ORDERSYNC_DB_TEMP_CONN_MAX", "10"))
DB_RETRY_MAX: int = int(os.getenv("ORDERSYNC_DB_RETRY_MAX", "5"))
DB_RETRY_BASE_DELAY: float = float(os.getenv("ORDERSYNC_DB_RETRY_BASE_DELAY", "0.1"))
DB_RETRY_MAX_DELAY: float = float(os.getenv("ORDERSYNC_DB_RETRY_MAX_DELAY", "2.0"))
DB_RETRY_JITTER: float = float(os.getenv("ORDERSYNC_DB_RETRY_JITTER", "0.1"))

# --- LLM ---
LLM_TIMEOUT_SECONDS: int = int(os.getenv("ORDERSYNC_LLM_TIMEOUT", "30"))
LLM_MAX_RETRIES: int = int(os.getenv("ORDERSYNC_LLM_MAX_RETRIES", "3"))
LLM_RETRY_BASE_DELAY: float = float(os.getenv("ORDERSYNC_LLM_RETRY_BASE_DELAY", "1.0"))

# --- Sync Pipeline ---
SYNC_FIRST_WINDOW_MONTHS: int = int(os.getenv("ORDERSYNC_FIRST_SYNC_MONTHS", "1"))
EXTRACT_GROUP_SIZE: int = int(os.getenv("ORDERSYNC_EXTRACT_GROUP_SIZE", "3"))
EXTRACT_GROUP_PAUSE_SECONDS: float = float(os.getenv("ORDERSYNC_EXTRACT_GROUP_PAUSE", "1.0"))
DEFAULT_CURRENCY: str = os.getenv("ORDERSYNC_DEFAULT_CURRENCY", "USD").upper()
PIPELINE_BODY_TRUNCATION: int = 8000
PIPELINE_ORDER_ID_MAX_LEN: int = 64

# --- API ---
API_LIST_LIMIT_DEFAULT: int = 100
API_LIST_LIMIT_MAX: int = 500
