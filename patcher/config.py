"""Configuration settings for the patch mirror server."""

import os
import tempfile

DEFAULT_PORT = 4444

PATCHER_HOST = os.environ.get("PATCHER_HOST", "0.0.0.0")

PATCHER_PORT = int(os.environ.get("PATCHER_PORT", str(DEFAULT_PORT)))

ROOT_DIR = os.environ.get("PATCHER_ROOT_DIR", "eqemupatcher")

SCRATCH_DIR = os.environ.get(
    "PATCHER_SCRATCH_DIR", os.path.join(tempfile.gettempdir(), "patcher")
)

REPO_URL = os.environ.get("REPO_URL", "")

WEBHOOK_KEY = os.environ.get("WEBHOOK_KEY", "")

TRUST_PROXY_HEADERS = os.environ.get("PATCHER_TRUST_PROXY_HEADERS", "false").lower() in (
    "1",
    "true",
    "yes",
)
