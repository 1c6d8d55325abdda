"""Configuration paths and defaults for the local module index."""

from __future__ import annotations

import os
from pathlib import Path

BASE_DIR = Path(os.environ.get("MODINDEX_HOME", str(Path.home() / ".modindex"))).expanduser()
DEFAULT_DB_PATH = BASE_DIR / "index.db"
MANIFEST_FILE = "go.mod"

# Load configuration from TOML file (if available)
from .config_manager import load_full_config  # noqa: E402

_toml_config = load_full_config()
_store_config = _toml_config.get("store", {})
_docs_config = _toml_config.get("docs", {})
_ingest_config = _toml_config.get("ingest", {})
_logging_config = _toml_config.get("logging", {})

# Store location, set via `modindex config set store.db_path <path>`
DB_PATH = Path(_store_config.get("db_path", str(DEFAULT_DB_PATH))).expanduser()

# Build context reported on rendered documentation
DOC_GOOS = _docs_config.get("goos", "linux")
DOC_GOARCH = _docs_config.get("goarch", "amd64")

INGEST_WORKERS = int(_ingest_config.get("workers", 4))
INGEST_TIMEOUT = float(_ingest_config.get("timeout", 300.0))

LOG_LEVEL = _logging_config.get("level", "WARNING")
