"""N-back game engine.

The engine owns one session at a time: it generates the stimulus sequence(s),
plays them back on a cooperative scheduler driven by ``update()``, evaluates
match claims and keeps the score. Presentation code only reads snapshots
(or subscribes to them) and calls the public entry points.

Lifecycle::

    IDLE --start_game--> RUNNING --last interval elapses--> FINISHED
      ^                     |
      +------stop_game------+

``start_game`` from any phase replaces the current session.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Generator

from .clock import Clock
from .nback_core import (
    GamePhase,
    GameType,
    MatchChannel,
    MatchClaimEvent,
    NBackConfig,
    NBackSnapshot,
    NBackSummary,
    SeededRng,
    SnapshotListener,
    number_to_letter,
)
from .persistence import HighScoreStore
from .results import NBackAttemptResult, attempt_result_from_engine
from .scheduler import CooperativeScheduler, ScheduledTask
from .sequence_generator import NBackSequenceGenerator, count_matches
from .speech import NullSpeaker, Speaker

logger = logging.getLogger(__name__)

FAILURE_FLASH_S = 0.2


class NBackEngine:
    def __init__(
        self,
        *,
        clock: Clock,
        high_scores: HighScoreStore,
        speaker: Speaker | None = None,
        seed: int | None = None,
        config: NBackConfig | None = None,
        on_finished: Callable[[NBackAttemptResult], None] | None = None,
    ) -> None:
        self._lock = threading.RLock()
        self._clock = clock
        self._scheduler = CooperativeScheduler(clock)
        self._generator = NBackSequenceGenerator(SeededRng(seed))
        self._high_scores = high_scores
        self._speaker: Speaker = NullSpeaker() if speaker is None else speaker
        self._on_finished = on_finished
        self._listeners: list[SnapshotListener] = []

        self._config = NBackConfig() if config is None else config
        self._active_config = self._config
        self._visual_selected = self._config.game_type.has_visual
        self._audio_selected = self._config.game_type.has_audio

        self._highscore = self._read_high_score()
        self._previous_highscore = self._highscore

        self._phase = GamePhase.IDLE
        self._visual_sequence: tuple[int, ...] = ()
        self._audio_sequence: tuple[int, ...] = ()
        self._current_index = -1
        self._visual_value: int | None = None
        self._audio_value: int | None = None
        self._visual_matched = False
        self._audio_matched = False
        self._presented_at_s = 0.0
        self._score = 0
        self._finished = False
        self._flash_failure = False
        self._events: list[MatchClaimEvent] = []

        self._session = 0
        self._pending_high_score: int | None = None
        self._playback_task: ScheduledTask | None = None
        self._flash_task: ScheduledTask | None = None

    # -- settings -----------------------------------------------------------
    # Stored as given; plausibility is only checked by start_game().

    @property
    def config(self) -> NBackConfig:
        return self._config

    @property
    def active_config(self) -> NBackConfig:
        """Configuration of the current (or most recent) session."""
        return self._active_config

    def set_sequence_length(self, value: int) -> None:
        self._set_config(sequence_length=int(value))

    def set_alphabet_size(self, value: int) -> None:
        self._set_config(alphabet_size=int(value))

    def set_match_percentage(self, value: int) -> None:
        self._set_config(match_percentage=int(value))

    def set_n_back(self, value: int) -> None:
        self._set_config(n_back=int(value))

    def set_event_interval_s(self, value: float) -> None:
        self._set_config(event_interval_s=float(value))

    def set_game_type(self, game_type: GameType) -> None:
        with self._lock:
            self._visual_selected = game_type.has_visual
            self._audio_selected = game_type.has_audio
            self._set_config(game_type=game_type)

    def toggle_visual_selection(self) -> None:
        with self._lock:
            self._visual_selected = not self._visual_selected
            self._set_config(game_type=self.selected_game_type())

    def toggle_audio_selection(self) -> None:
        with self._lock:
            self._audio_selected = not self._audio_selected
            self._set_config(game_type=self.selected_game_type())

    def selected_game_type(self) -> GameType:
        if self._visual_selected and self._audio_selected:
            return GameType.AUDIO_VISUAL
        if self._audio_selected:
            return GameType.AUDIO
        return GameType.VISUAL

    @property
    def visual_selected(self) -> bool:
        return self._visual_selected

    @property
    def audio_selected(self) -> bool:
        return self._audio_selected

    def _set_config(self, **changes: object) -> None:
        with self._lock:
            self._config = self._config.replace(**changes)
            if self._phase is GamePhase.IDLE:
                self._active_config = self._config
            self._publish()

    # -- observable state ---------------------------------------------------

    @property
    def phase(self) -> GamePhase:
        return self._phase

    @property
    def score(self) -> int:
        return self._score

    @property
    def highscore(self) -> int:
        return self._highscore

    @property
    def previous_highscore(self) -> int:
        """High score as it stood when the current session started."""
        return self._previous_highscore

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def flash_failure(self) -> bool:
        return self._flash_failure

    @property
    def current_index(self) -> int:
        return self._current_index

    @property
    def visual_sequence(self) -> tuple[int, ...]:
        return self._visual_sequence

    @property
    def audio_sequence(self) -> tuple[int, ...]:
        return self._audio_sequence

    @property
    def playback_active(self) -> bool:
        return self._playback_task is not None and self._playback_task.active

    def active_task_names(self) -> list[str]:
        with self._lock:
            return [t.name for t in self._scheduler.active_tasks()]

    def events(self) -> list[MatchClaimEvent]:
        return list(self._events)

    def snapshot(self) -> NBackSnapshot:
        with self._lock:
            cfg = self._active_config
            return NBackSnapshot(
                phase=self._phase,
                game_type=cfg.game_type,
                current_index=self._current_index,
                sequence_length=cfg.sequence_length,
                n_back=cfg.n_back,
                visual_value=self._visual_value,
                audio_value=self._audio_value,
                visual_matched=self._visual_matched,
                audio_matched=self._audio_matched,
                score=self._score,
                highscore=self._highscore,
                finished=self._finished,
                flash_failure=self._flash_failure,
                grid_side=cfg.grid_side or 0,
            )

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Push a fresh snapshot to ``listener`` on every state change."""

        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def summary(self) -> NBackSummary:
        with self._lock:
            n = self._active_config.n_back
            played = self._current_index + 1
            targets = count_matches(self._visual_sequence[:played], n)
            targets += count_matches(self._audio_sequence[:played], n)
            hits = sum(1 for e in self._events if e.is_hit)
            misses = len(self._events) - hits
            denom = targets + misses
            rts = [e.response_time_s for e in self._events]
            return NBackSummary(
                targets=targets,
                hits=hits,
                misses=misses,
                missed_targets=max(0, targets - hits),
                accuracy=0.0 if denom == 0 else hits / denom,
                mean_response_time_s=None if not rts else sum(rts) / len(rts),
            )

    # -- session control ----------------------------------------------------

    def start_game(
        self,
        size: int | None = None,
        combinations: int | None = None,
        percent_match: int | None = None,
    ) -> None:
        """Start a fresh session, replacing any session in progress.

        Arguments override the stored settings for this session only. Raises
        ConfigurationError (leaving the engine untouched) when the effective
        configuration cannot be played.
        """

        with self._lock:
            overrides: dict[str, object] = {}
            if size is not None:
                overrides["sequence_length"] = int(size)
            if combinations is not None:
                overrides["alphabet_size"] = int(combinations)
            if percent_match is not None:
                overrides["match_percentage"] = int(percent_match)
            cfg = self._config.replace(**overrides)
            cfg.validate()

            params = dict(
                sequence_length=cfg.sequence_length,
                alphabet_size=cfg.alphabet_size,
                match_percentage=cfg.match_percentage,
                n_back=cfg.n_back,
            )
            primary = self._generator.generate(**params)
            logger.debug("primary sequence: %s", primary)
            if cfg.game_type is GameType.AUDIO_VISUAL:
                secondary = self._generator.generate_distinct(primary, **params)
                logger.debug("audio sequence: %s", secondary)
                visual, audio = primary, secondary
            elif cfg.game_type is GameType.AUDIO:
                visual, audio = (), primary
            else:
                visual, audio = primary, ()

            self._cancel_tasks()

            self._active_config = cfg
            self._visual_sequence = visual
            self._audio_sequence = audio
            self._current_index = -1
            self._visual_value = None
            self._audio_value = None
            self._visual_matched = False
            self._audio_matched = False
            self._score = 0
            self._finished = False
            self._flash_failure = False
            self._events = []
            self._previous_highscore = self._highscore
            self._phase = GamePhase.RUNNING
            logger.info(
                "game started: %s, %d events, N=%d, %d%% match",
                cfg.game_type.value,
                cfg.sequence_length,
                cfg.n_back,
                cfg.match_percentage,
            )

            self._session += 1
            self._playback_task = self._scheduler.spawn(
                self._playback(cfg, visual, audio, self._session), name="playback"
            )

    def stop_game(self) -> None:
        """Abort the running session; no finalize, no high-score write."""

        with self._lock:
            if self._phase is not GamePhase.RUNNING:
                return
            self._cancel_tasks()
            self._session += 1
            self._flash_failure = False
            self._phase = GamePhase.IDLE
            logger.info("game stopped at index %d", self._current_index)
            self._publish()

    def update(self) -> None:
        """Advance timed tasks; call once per frame."""

        with self._lock:
            self._scheduler.update()

    def check_visual_match(self) -> None:
        self._check_match(MatchChannel.VISUAL)

    def check_audio_match(self) -> None:
        self._check_match(MatchChannel.AUDIO)

    # -- internals ----------------------------------------------------------

    def _check_match(self, channel: MatchChannel) -> None:
        with self._lock:
            if self._phase is not GamePhase.RUNNING:
                return
            seq = self._visual_sequence if channel is MatchChannel.VISUAL else self._audio_sequence
            if not seq:
                return

            index = self._current_index
            reference = index - self._active_config.n_back
            is_hit = reference >= 0 and seq[index] == seq[reference]
            already = self._visual_matched if channel is MatchChannel.VISUAL else self._audio_matched
            if is_hit and already:
                return

            now = self._clock.now()
            self._events.append(
                MatchClaimEvent(
                    index=index,
                    channel=channel,
                    is_hit=is_hit,
                    presented_at_s=self._presented_at_s,
                    claimed_at_s=now,
                    response_time_s=max(0.0, now - self._presented_at_s),
                )
            )
            if not is_hit:
                self._trigger_failure_flash()
                return

            if channel is MatchChannel.VISUAL:
                self._visual_matched = True
            else:
                self._audio_matched = True
            self._score += 1
            self._publish()

    def _playback(
        self,
        cfg: NBackConfig,
        visual: tuple[int, ...],
        audio: tuple[int, ...],
        session: int,
    ) -> Generator[float, None, None]:
        for index in range(cfg.sequence_length):
            with self._lock:
                self._visual_matched = False
                self._audio_matched = False
                self._current_index = index
                self._visual_value = visual[index] if visual else None
                self._audio_value = audio[index] if audio else None
                self._presented_at_s = self._clock.now()
                self._publish()
                # A listener may have restarted or stopped the game.
                if self._session != session:
                    return
                if audio:
                    self._speak(number_to_letter(audio[index]))
            yield cfg.event_interval_s
        self._finalize()

    def _finalize(self) -> None:
        with self._lock:
            if self._score > self._highscore:
                self._highscore = self._score
                self._pending_high_score = self._score
                self._scheduler.spawn(self._persist_high_score(), name="highscore-write")
            self._finished = True
            self._phase = GamePhase.FINISHED
            self._playback_task = None
            logger.info("game finished: score %d (high score %d)", self._score, self._highscore)
            result = attempt_result_from_engine(self) if self._on_finished is not None else None
            self._publish()

            if result is not None:
                try:
                    self._on_finished(result)
                except Exception:
                    logger.exception("on_finished callback failed")

    def _persist_high_score(self) -> Generator[float, None, None]:
        # Written on the next update() so the playback step never waits on I/O.
        yield 0.0
        self.flush_high_score()

    def flush_high_score(self) -> None:
        """Write a pending high score now (no-op when nothing is pending)."""

        with self._lock:
            score, self._pending_high_score = self._pending_high_score, None
            if score is not None:
                self._write_high_score(score)

    def shutdown(self) -> None:
        """Stop any session and write a pending high score before exit."""

        with self._lock:
            self.stop_game()
            self.flush_high_score()

    def _trigger_failure_flash(self) -> None:
        self._scheduler.cancel(self._flash_task)
        self._flash_task = self._scheduler.spawn(self._failure_flash(), name="failure-flash")

    def _failure_flash(self) -> Generator[float, None, None]:
        with self._lock:
            self._flash_failure = True
            self._publish()
        yield FAILURE_FLASH_S
        with self._lock:
            self._flash_failure = False
            self._flash_task = None
            self._publish()

    def _cancel_tasks(self) -> None:
        self._scheduler.cancel(self._playback_task)
        self._scheduler.cancel(self._flash_task)
        self._playback_task = None
        self._flash_task = None

    def _speak(self, letter: str) -> None:
        try:
            self._speaker.speak(letter)
        except Exception:
            logger.warning("speech output failed for %r", letter, exc_info=True)

    def _read_high_score(self) -> int:
        try:
            return max(0, int(self._high_scores.read_high_score()))
        except Exception:
            logger.warning("high score read failed; starting from 0", exc_info=True)
            return 0

    def _write_high_score(self, score: int) -> None:
        try:
            self._high_scores.write_high_score(score)
        except Exception:
            logger.warning("high score write failed; keeping it in memory only", exc_info=True)

    def _publish(self) -> None:
        if not self._listeners:
            return
        snap = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception:
                logger.exception("snapshot listener failed")


class FakeNBackEngine:
    """Deterministic stand-in for NBackEngine when exercising presentation code.

    Score, high score and grid are fixed and no session ever runs. Settings
    setters and mode toggles only update the stored config; the session
    entry points (start, stop, match checks) are recorded in ``calls``.
    """

    def __init__(self) -> None:
        self._config = NBackConfig()
        self._visual_selected = True
        self._audio_selected = False
        self.calls: list[str] = []
        self._listeners: list[SnapshotListener] = []

    @property
    def config(self) -> NBackConfig:
        return self._config

    def snapshot(self) -> NBackSnapshot:
        return NBackSnapshot(
            phase=GamePhase.IDLE,
            game_type=self._config.game_type,
            current_index=-1,
            sequence_length=self._config.sequence_length,
            n_back=self._config.n_back,
            visual_value=None,
            audio_value=None,
            visual_matched=False,
            audio_matched=False,
            score=10,
            highscore=42,
            finished=False,
            flash_failure=False,
            grid_side=3,
        )

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener) if listener in self._listeners else None

    def set_sequence_length(self, value: int) -> None:
        self._config = self._config.replace(sequence_length=int(value))

    def set_alphabet_size(self, value: int) -> None:
        self._config = self._config.replace(alphabet_size=int(value))

    def set_match_percentage(self, value: int) -> None:
        self._config = self._config.replace(match_percentage=int(value))

    def set_n_back(self, value: int) -> None:
        self._config = self._config.replace(n_back=int(value))

    def set_event_interval_s(self, value: float) -> None:
        self._config = self._config.replace(event_interval_s=float(value))

    def set_game_type(self, game_type: GameType) -> None:
        self._visual_selected = game_type.has_visual
        self._audio_selected = game_type.has_audio
        self._config = self._config.replace(game_type=game_type)

    @property
    def visual_selected(self) -> bool:
        return self._visual_selected

    @property
    def audio_selected(self) -> bool:
        return self._audio_selected

    def toggle_visual_selection(self) -> None:
        self._visual_selected = not self._visual_selected
        self._config = self._config.replace(game_type=self.selected_game_type())

    def toggle_audio_selection(self) -> None:
        self._audio_selected = not self._audio_selected
        self._config = self._config.replace(game_type=self.selected_game_type())

    def selected_game_type(self) -> GameType:
        if self._visual_selected and self._audio_selected:
            return GameType.AUDIO_VISUAL
        if self._audio_selected:
            return GameType.AUDIO
        return GameType.VISUAL

    def start_game(
        self,
        size: int | None = None,
        combinations: int | None = None,
        percent_match: int | None = None,
    ) -> None:
        self.calls.append("start_game")

    def stop_game(self) -> None:
        self.calls.append("stop_game")

    def check_visual_match(self) -> None:
        self.calls.append("check_visual_match")

    def check_audio_match(self) -> None:
        self.calls.append("check_audio_match")

    def update(self) -> None:
        return None


def build_nback_engine(
    *,
    clock: Clock,
    high_scores: HighScoreStore,
    speaker: Speaker | None = None,
    seed: int | None = None,
    config: NBackConfig | None = None,
    on_finished: Callable[[NBackAttemptResult], None] | None = None,
) -> NBackEngine:
    return NBackEngine(
        clock=clock,
        high_scores=high_scores,
        speaker=speaker,
        seed=seed,
        config=config,
        on_finished=on_finished,
    )
