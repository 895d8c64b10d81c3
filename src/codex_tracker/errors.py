"""Error taxonomy for snapshot acquisition."""


class TrackerError(Exception):
    """Base class for every acquisition failure the engine understands."""

    # Whether a failure of this kind clears the retained snapshot.
    discards_snapshot = False


class NotConfiguredError(TrackerError):
    """No credential or source root is configured."""


class ValidationError(TrackerError):
    """A required user setting is blank."""


class TransportError(TrackerError):
    """Network or I/O failure before a response was received."""


class InvalidResponseError(TrackerError):
    def __init__(self, message: str = "Received an invalid response from OpenAI.") -> None:
        super().__init__(message)


class HttpError(TrackerError):
    """Non-2xx response from the remote API."""

    MAX_BODY = 220

    def __init__(self, status_code: int, body: str = "") -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(self._describe())

    def _describe(self) -> str:
        if not self.body:
            return f"OpenAI request failed ({self.status_code})."
        body = self.body
        if len(body) > self.MAX_BODY:
            body = body[: self.MAX_BODY] + "..."
        return f"OpenAI request failed ({self.status_code}): {body}"

    @property
    def is_bad_api_key(self) -> bool:
        return self.status_code == 401 and "incorrect api key" in self.body.lower()


class ScanError(TrackerError):
    """The session root is missing or a record file could not be read."""

    discards_snapshot = True


class AuthFileError(TrackerError):
    """The local Codex login file is missing or holds no token."""
