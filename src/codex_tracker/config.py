"""Settings persistence for Codex Tracker."""

import json
from dataclasses import dataclass, asdict
from pathlib import Path


SETTINGS_DIR = Path.home() / ".codex-tracker"
SETTINGS_PATH = SETTINGS_DIR / "settings.json"

SUPPORTED_INTERVALS = (60, 120, 300)
DEFAULT_MODEL = "gpt-5-codex"


@dataclass
class Settings:
    refresh_interval: int = 60  # seconds, one of SUPPORTED_INTERVALS
    poll_mode: str | None = None  # None until the user picks one
    model: str = DEFAULT_MODEL

    def __post_init__(self) -> None:
        if self.refresh_interval not in SUPPORTED_INTERVALS:
            self.refresh_interval = SUPPORTED_INTERVALS[0]
        if not isinstance(self.model, str):
            self.model = DEFAULT_MODEL
        if self.poll_mode is not None and not isinstance(self.poll_mode, str):
            self.poll_mode = None

    def save(self, path: Path | None = None) -> None:
        path = path or SETTINGS_PATH
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(asdict(self), indent=2), encoding="utf-8")

    @classmethod
    def load(cls, path: Path | None = None) -> "Settings":
        path = path or SETTINGS_PATH
        if not path.exists():
            settings = cls()
            settings.save(path)
            return settings
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            known_fields = {f.name for f in cls.__dataclass_fields__.values()}
            filtered = {k: v for k, v in data.items() if k in known_fields}
            return cls(**filtered)
        except (json.JSONDecodeError, TypeError, AttributeError):
            return cls()
