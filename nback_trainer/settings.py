from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from .nback_core import GameType, NBackConfig

logger = logging.getLogger(__name__)

SETTINGS_PATH_ENV = "NBACK_SETTINGS_PATH"


def _as_int(value: object, fallback: int) -> int:
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return fallback


def _as_float(value: object, fallback: float) -> float:
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return fallback


def config_to_dict(config: NBackConfig) -> dict[str, Any]:
    return {
        "sequence_length": int(config.sequence_length),
        "alphabet_size": int(config.alphabet_size),
        "match_percentage": int(config.match_percentage),
        "n_back": int(config.n_back),
        "event_interval_ms": int(round(config.event_interval_s * 1000.0)),
        "game_type": config.game_type.value,
    }


def config_from_dict(data: object) -> NBackConfig:
    """Coerce a loaded JSON object into a config; bad fields fall back to defaults."""

    defaults = NBackConfig()
    if not isinstance(data, dict):
        return defaults
    try:
        game_type = GameType(str(data.get("game_type", defaults.game_type.value)))
    except ValueError:
        game_type = defaults.game_type
    interval_ms = _as_float(data.get("event_interval_ms"), defaults.event_interval_s * 1000.0)
    return NBackConfig(
        sequence_length=_as_int(data.get("sequence_length"), defaults.sequence_length),
        alphabet_size=_as_int(data.get("alphabet_size"), defaults.alphabet_size),
        match_percentage=_as_int(data.get("match_percentage"), defaults.match_percentage),
        n_back=_as_int(data.get("n_back"), defaults.n_back),
        event_interval_s=interval_ms / 1000.0,
        game_type=game_type,
    )


class SettingsStore:
    """Game settings persisted as a small JSON document.

    Values are stored as entered; whether they make a playable game is only
    decided when a game starts.
    """

    _version = 1

    def __init__(self, path: Path) -> None:
        self._path = path
        self._config = NBackConfig()
        self._load()

    @classmethod
    def default_path(cls) -> Path:
        explicit = os.environ.get(SETTINGS_PATH_ENV)
        if explicit:
            return Path(explicit).expanduser()
        return Path.home() / ".nback_trainer_settings.json"

    @property
    def path(self) -> Path:
        return self._path

    @property
    def config(self) -> NBackConfig:
        return self._config

    def update(self, **changes: object) -> NBackConfig:
        self._config = self._config.replace(**changes)
        self.save()
        return self._config

    def save(self) -> None:
        payload = {"version": self._version, "settings": config_to_dict(self._config)}
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_suffix(f"{self._path.suffix}.tmp")
            tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            tmp_path.replace(self._path)
        except OSError:
            logger.warning("could not save settings to %s", self._path, exc_info=True)

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("ignoring unreadable settings file %s", self._path)
            return
        if not isinstance(payload, dict):
            return
        self._config = config_from_dict(payload.get("settings"))
