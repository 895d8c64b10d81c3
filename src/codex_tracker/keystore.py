"""API key storage."""

import logging
import os
from pathlib import Path

from codex_tracker.config import SETTINGS_DIR

log = logging.getLogger(__name__)

KEY_PATH = SETTINGS_DIR / "api-key"
ENV_API_KEY = "OPENAI_API_KEY"


class FileKeyStore:
    """Keeps the OpenAI API key in a user-only readable file."""

    def __init__(self, path: Path = KEY_PATH) -> None:
        self.path = path

    def save(self, secret: str) -> None:
        if not secret:
            if self.path.exists():
                self.path.unlink()
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(secret, encoding="utf-8")
        os.chmod(self.path, 0o600)

    def load(self) -> str | None:
        if not self.path.exists():
            return None
        try:
            return self.path.read_text(encoding="utf-8").strip()
        except OSError as e:
            log.error("Could not read API key file: %s", e)
            return None


def initial_api_key(store: FileKeyStore, environ: dict | None = None) -> str:
    """Stored key, or the environment's ``OPENAI_API_KEY`` when none is stored."""
    saved = store.load() or ""
    if saved:
        return saved
    env = os.environ if environ is None else environ
    return env.get(ENV_API_KEY, "").strip()
