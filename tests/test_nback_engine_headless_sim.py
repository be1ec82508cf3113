from __future__ import annotations

from dataclasses import dataclass

import pytest

from nback_trainer.nback_core import GamePhase, GameType, NBackConfig
from nback_trainer.nback_engine import build_nback_engine
from nback_trainer.persistence import InMemoryHighScoreStore
from nback_trainer.results import NBackAttemptResult, attempt_result_from_engine
from nback_trainer.sequence_generator import match_indices


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += float(dt)


def _play_frames(
    *,
    clock: FakeClock,
    engine,
    visual_targets: set[int],
    audio_targets: set[int],
    claim_delay_s: float = 0.5,
    max_steps: int = 10_000,
) -> None:
    """Drive the engine at 60 fps and answer every target once after a fixed delay."""

    answered: set[tuple[str, int]] = set()
    for _ in range(max_steps):
        clock.advance(1.0 / 60.0)
        engine.update()
        snap = engine.snapshot()
        if snap.phase is GamePhase.FINISHED:
            return

        i = snap.current_index
        if clock.t - (i * engine.active_config.event_interval_s) < claim_delay_s:
            continue
        if i in visual_targets and ("v", i) not in answered:
            engine.check_visual_match()
            answered.add(("v", i))
        if i in audio_targets and ("a", i) not in answered:
            engine.check_audio_match()
            answered.add(("a", i))

    raise AssertionError(f"game did not finish in {max_steps} steps")


def _run_scripted_game(seed: int) -> tuple[tuple[object, ...], list[tuple[object, ...]]]:
    clock = FakeClock()
    results: list[NBackAttemptResult] = []
    engine = build_nback_engine(
        clock=clock,
        high_scores=InMemoryHighScoreStore(),
        seed=seed,
        config=NBackConfig(sequence_length=16, match_percentage=40, game_type=GameType.AUDIO_VISUAL),
        on_finished=results.append,
    )
    engine.start_game()
    _play_frames(
        clock=clock,
        engine=engine,
        visual_targets=set(match_indices(engine.visual_sequence, 2)),
        audio_targets=set(match_indices(engine.audio_sequence, 2)),
    )
    assert len(results) == 1
    r = results[0]
    summary = (r.visual_sequence, r.audio_sequence, r.score, r.targets, r.hits, r.misses)
    events = [(e.index, e.channel.value, e.is_hit) for e in r.events]
    return summary, events


def test_default_visual_session_scores_every_target() -> None:
    clock = FakeClock()
    store = InMemoryHighScoreStore()
    engine = build_nback_engine(clock=clock, high_scores=store, seed=2024, config=NBackConfig())
    engine.start_game()

    targets = set(match_indices(engine.visual_sequence, 2))
    assert len(targets) == 2

    for i in range(10):
        assert engine.snapshot().current_index == i
        if i in targets:
            engine.check_visual_match()
        clock.advance(2.0)
        engine.update()

    # One more frame lets the deferred high-score write run.
    engine.update()
    snap = engine.snapshot()
    assert snap.finished
    assert snap.phase is GamePhase.FINISHED
    assert snap.score == 2
    assert snap.highscore == 2
    assert store.writes == [2]
    assert engine.active_task_names() == []


def test_result_summarizes_the_finished_game() -> None:
    clock = FakeClock()
    engine = build_nback_engine(
        clock=clock,
        high_scores=InMemoryHighScoreStore(1),
        seed=8,
        config=NBackConfig(sequence_length=12, match_percentage=50),
    )
    engine.start_game()
    targets = match_indices(engine.visual_sequence, 2)
    wrong = next(i for i in range(12) if i not in targets)

    for i in range(12):
        if i == targets[0]:
            clock.advance(0.25)
            engine.check_visual_match()
            clock.advance(1.75)
        else:
            if i == wrong:
                engine.check_visual_match()
            clock.advance(2.0)
        engine.update()

    result = attempt_result_from_engine(engine)
    assert result.game_type is GameType.VISUAL
    assert result.sequence_length == 12
    assert result.visual_sequence == engine.visual_sequence
    assert result.audio_sequence == ()
    assert result.score == 1
    assert result.previous_highscore == 1
    assert not result.new_highscore
    assert result.targets == 5
    assert (result.hits, result.misses) == (1, 1)
    assert result.accuracy == pytest.approx(1 / 6)
    assert result.mean_rt_ms == pytest.approx(125.0)


def test_scripted_audio_visual_game_is_deterministic() -> None:
    summary_a, events_a = _run_scripted_game(seed=77)
    summary_b, events_b = _run_scripted_game(seed=77)

    assert summary_a == summary_b
    assert events_a == events_b

    visual, audio, score, targets, hits, misses = summary_a
    assert visual != audio
    assert score == hits == targets
    assert misses == 0
    assert all(is_hit for _, _, is_hit in events_a)
