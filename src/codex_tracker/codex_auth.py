"""Detection of a local Codex CLI login."""

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from pathlib import Path

from codex_tracker.errors import AuthFileError
from codex_tracker.sessions import CODEX_HOME

log = logging.getLogger(__name__)

AUTH_PATH = CODEX_HOME / "auth.json"
PROFILE_CLAIM = "https://api.openai.com/profile"


@dataclass(frozen=True)
class CodexAuthSession:
    email: str | None


def _non_empty(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def _decode_segment(segment: str) -> dict | None:
    padded = segment.replace("-", "+").replace("_", "/")
    padded += "=" * (-len(padded) % 4)
    try:
        data = json.loads(base64.b64decode(padded))
    except (binascii.Error, ValueError):
        return None
    return data if isinstance(data, dict) else None


def email_from_jwt(token: str | None) -> str | None:
    """Pull the account e-mail out of a JWT payload without verifying it."""
    if not token:
        return None
    segments = token.split(".")
    if len(segments) < 2:
        return None
    payload = _decode_segment(segments[1])
    if payload is None:
        return None
    if isinstance(payload.get("email"), str):
        return payload["email"]
    profile = payload.get(PROFILE_CLAIM)
    if isinstance(profile, dict) and isinstance(profile.get("email"), str):
        return profile["email"]
    return None


def load_session(path: Path = AUTH_PATH) -> CodexAuthSession:
    """Read the Codex login file.

    Raises:
        AuthFileError: the file is missing, unreadable or holds no token.
    """
    if not path.exists():
        raise AuthFileError("Codex auth file was not found.")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise AuthFileError(f"Could not read Codex auth file: {e}") from e

    tokens = data.get("tokens") if isinstance(data, dict) else None
    tokens = tokens if isinstance(tokens, dict) else {}
    access_token = _non_empty(tokens.get("access_token"))
    id_token = _non_empty(tokens.get("id_token"))
    if access_token is None and id_token is None:
        raise AuthFileError("Codex login token was not found.")

    return CodexAuthSession(email=email_from_jwt(id_token) or email_from_jwt(access_token))
