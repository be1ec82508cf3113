from __future__ import annotations

import math
import random
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from enum import Enum
from typing import Protocol

LETTERS = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"


class ConfigurationError(ValueError):
    """Raised when a game configuration is not playable."""


class GameType(str, Enum):
    VISUAL = "visual"
    AUDIO = "audio"
    AUDIO_VISUAL = "audio_visual"

    @property
    def has_visual(self) -> bool:
        return self is not GameType.AUDIO

    @property
    def has_audio(self) -> bool:
        return self is not GameType.VISUAL

    @property
    def label(self) -> str:
        return {
            GameType.VISUAL: "Visual",
            GameType.AUDIO: "Audio",
            GameType.AUDIO_VISUAL: "Audio-Visual",
        }[self]


class GamePhase(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    FINISHED = "finished"


class MatchChannel(str, Enum):
    VISUAL = "visual"
    AUDIO = "audio"


@dataclass(frozen=True, slots=True)
class NBackConfig:
    sequence_length: int = 10
    alphabet_size: int = 9
    match_percentage: int = 30
    n_back: int = 2
    event_interval_s: float = 2.0
    game_type: GameType = GameType.VISUAL

    def validate(self) -> None:
        validate_sequence_parameters(
            sequence_length=self.sequence_length,
            alphabet_size=self.alphabet_size,
            match_percentage=self.match_percentage,
            n_back=self.n_back,
        )
        if self.event_interval_s <= 0:
            raise ConfigurationError("event_interval_s must be > 0")
        if self.game_type.has_visual and grid_side(self.alphabet_size) is None:
            raise ConfigurationError(
                f"alphabet_size must be a perfect square for visual modes (got {self.alphabet_size})"
            )

    def replace(self, **changes: object) -> "NBackConfig":
        return replace(self, **changes)

    @property
    def grid_side(self) -> int | None:
        return grid_side(self.alphabet_size)


@dataclass(frozen=True, slots=True)
class NBackSnapshot:
    """View model for the UI (pure data)."""

    phase: GamePhase
    game_type: GameType
    current_index: int
    sequence_length: int
    n_back: int
    visual_value: int | None
    audio_value: int | None
    visual_matched: bool
    audio_matched: bool
    score: int
    highscore: int
    finished: bool
    flash_failure: bool
    grid_side: int

    @property
    def audio_letter(self) -> str:
        return "" if self.audio_value is None else number_to_letter(self.audio_value)


@dataclass(frozen=True, slots=True)
class MatchClaimEvent:
    index: int
    channel: MatchChannel
    is_hit: bool
    presented_at_s: float
    claimed_at_s: float
    response_time_s: float


@dataclass(frozen=True, slots=True)
class NBackSummary:
    targets: int  # positions that repeat their N-back value, summed over channels
    hits: int
    misses: int
    missed_targets: int
    accuracy: float
    mean_response_time_s: float | None


SnapshotListener = Callable[[NBackSnapshot], None]


class NBackGame(Protocol):
    """Public contract shared by the real engine and the presentation stub."""

    @property
    def config(self) -> NBackConfig: ...
    def snapshot(self) -> NBackSnapshot: ...
    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]: ...
    def set_sequence_length(self, value: int) -> None: ...
    def set_alphabet_size(self, value: int) -> None: ...
    def set_match_percentage(self, value: int) -> None: ...
    def set_n_back(self, value: int) -> None: ...
    def set_event_interval_s(self, value: float) -> None: ...
    def set_game_type(self, game_type: GameType) -> None: ...
    def toggle_visual_selection(self) -> None: ...
    def toggle_audio_selection(self) -> None: ...
    def selected_game_type(self) -> GameType: ...
    def start_game(
        self,
        size: int | None = None,
        combinations: int | None = None,
        percent_match: int | None = None,
    ) -> None: ...
    def stop_game(self) -> None: ...
    def check_visual_match(self) -> None: ...
    def check_audio_match(self) -> None: ...
    def update(self) -> None: ...


class SeededRng:
    """Seeded RNG wrapper; the only random source the generator touches."""

    def __init__(self, seed: int | None = None) -> None:
        self._rng = random.Random(seed)

    def randint(self, a: int, b: int) -> int:
        return self._rng.randint(a, b)

    def sample(self, population: Sequence[int], k: int) -> list[int]:
        return self._rng.sample(list(population), k)


def validate_sequence_parameters(
    *,
    sequence_length: int,
    alphabet_size: int,
    match_percentage: float,
    n_back: int,
) -> None:
    if n_back < 1:
        raise ConfigurationError(f"n_back must be >= 1 (got {n_back})")
    if sequence_length <= n_back:
        raise ConfigurationError(
            f"sequence_length must be greater than n_back (got {sequence_length} <= {n_back})"
        )
    if alphabet_size < 2:
        raise ConfigurationError(f"alphabet_size must be >= 2 (got {alphabet_size})")
    if not (0 <= match_percentage <= 100):
        raise ConfigurationError(f"match_percentage must be in [0, 100] (got {match_percentage})")


def grid_side(alphabet_size: int) -> int | None:
    """Side of the square grid for ``alphabet_size`` cells, None if not square."""

    if alphabet_size < 1:
        return None
    side = math.isqrt(alphabet_size)
    return side if side * side == alphabet_size else None


def number_to_letter(value: int) -> str:
    # Values are 1-based: 1 -> A, 26 -> Z, 27 -> A.
    return LETTERS[(int(value) - 1) % len(LETTERS)]
