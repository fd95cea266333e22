from __future__ import annotations

import json
import shutil
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Optional

from localtune.logger import log


@dataclass(slots=True)
class LocalTuneSettings:
    host: str = "127.0.0.1"
    port: int = 11434
    probe_timeout_s: float = 60.0
    max_attempts: int = 6
    num_thread: Optional[int] = None
    workdir: Optional[str] = None
    ollama_bin: Optional[str] = None


_FIELD_TYPES: dict[str, type] = {
    "host": str,
    "port": int,
    "probe_timeout_s": float,
    "max_attempts": int,
    "num_thread": int,
    "workdir": str,
    "ollama_bin": str,
}


def coerce_setting(key: str, raw: str) -> Any:
    """Convert a command-line string into the type of setting `key`."""
    if key not in _FIELD_TYPES:
        raise KeyError(key)
    if raw.strip().lower() in {"", "none", "null"}:
        if getattr(LocalTuneSettings(), key) is None:
            return None
        raise ValueError(f"{key} cannot be empty")
    value = _FIELD_TYPES[key](raw)
    if isinstance(value, (int, float)) and value <= 0:
        raise ValueError(f"{key} must be positive")
    return value


class SettingsStore:
    def __init__(self, home: Optional[Path] = None) -> None:
        self.home = home or (Path.home() / ".localtune")
        self.path = self.home / "settings.json"
        self.home.mkdir(parents=True, exist_ok=True)

    def load(self) -> LocalTuneSettings:
        if not self.path.exists():
            return LocalTuneSettings()
        try:
            raw: dict[str, Any] = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            backup = self.path.with_suffix(self.path.suffix + ".corrupt")
            try:
                shutil.copyfile(self.path, backup)
            except OSError as exc:
                log.warning("Could not back up corrupt settings: %s", exc)
            log.warning("Settings file %s was corrupt; reset to defaults.", self.path)
            self.save(LocalTuneSettings())
            return LocalTuneSettings()
        if not isinstance(raw, dict):
            self.save(LocalTuneSettings())
            return LocalTuneSettings()
        return LocalTuneSettings(**self._coerce_stored(raw))

    def _coerce_stored(self, raw: dict[str, Any]) -> dict[str, Any]:
        """Keep known keys whose stored value is valid; others fall back to their default."""
        values: dict[str, Any] = {}
        for key, stored in raw.items():
            if key not in _FIELD_TYPES:
                continue
            if isinstance(stored, (dict, list, bool)):
                log.warning("Ignoring setting %s in %s: unsupported value %r", key, self.path, stored)
                continue
            try:
                values[key] = coerce_setting(key, "" if stored is None else str(stored))
            except ValueError as exc:
                log.warning("Ignoring setting %s in %s: %s", key, self.path, exc)
        return values

    def save(self, settings: LocalTuneSettings) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(asdict(settings), indent=2), encoding="utf-8")
        tmp.replace(self.path)
