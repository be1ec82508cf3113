from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from .nback_core import GameType, MatchClaimEvent

if TYPE_CHECKING:
    from .nback_engine import NBackEngine


@dataclass(frozen=True, slots=True)
class NBackAttemptResult:
    """Persistable summary + claim log for a finished game."""

    game_type: GameType
    sequence_length: int
    alphabet_size: int
    match_percentage: float
    n_back: int
    event_interval_s: float
    visual_sequence: tuple[int, ...]
    audio_sequence: tuple[int, ...]

    score: int
    previous_highscore: int
    targets: int
    hits: int
    misses: int
    accuracy: float
    mean_rt_ms: float | None

    events: list[MatchClaimEvent]

    @property
    def new_highscore(self) -> bool:
        return self.score > self.previous_highscore


def attempt_result_from_engine(engine: NBackEngine) -> NBackAttemptResult:
    """Build an NBackAttemptResult from an engine whose game has finished."""

    cfg = engine.active_config
    summary = engine.summary()
    mean_ms = None if summary.mean_response_time_s is None else summary.mean_response_time_s * 1000.0
    return NBackAttemptResult(
        game_type=cfg.game_type,
        sequence_length=int(cfg.sequence_length),
        alphabet_size=int(cfg.alphabet_size),
        match_percentage=float(cfg.match_percentage),
        n_back=int(cfg.n_back),
        event_interval_s=float(cfg.event_interval_s),
        visual_sequence=engine.visual_sequence,
        audio_sequence=engine.audio_sequence,
        score=int(engine.score),
        previous_highscore=int(engine.previous_highscore),
        targets=int(summary.targets),
        hits=int(summary.hits),
        misses=int(summary.misses),
        accuracy=float(summary.accuracy),
        mean_rt_ms=mean_ms,
        events=engine.events(),
    )
