"""Pygame UI shell for the N-Back Trainer.

Screens:
- Main menu (play, mode toggles, settings)
- Settings (events per game, grid, percent match, interval, N)
- Game (grid / spoken letter display, match keys, score, finished dialog)

Sequence generation, timing, scoring and high-score logic live in
nback_trainer/* (core modules); this module only draws snapshots and forwards
key presses.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

import pygame

from .clock import RealClock
from .nback_core import ConfigurationError, GameType, NBackGame, NBackSnapshot
from .nback_engine import build_nback_engine
from .persistence import SqliteHighScoreStore, default_db_path, record_nback_attempt
from .results import NBackAttemptResult
from .settings import SettingsStore
from .speech import OfflineTtsSpeaker

logger = logging.getLogger(__name__)

APP_VERSION = "1.0.0"
LOG_LEVEL_ENV = "NBACK_LOG_LEVEL"
WINDOW_SIZE = (960, 540)
TARGET_FPS = 60

BG = (3, 9, 78)
PANEL_BG = (8, 18, 104)
HEADER_BG = (18, 30, 118)
BORDER = (226, 236, 255)
TEXT_MAIN = (238, 245, 255)
TEXT_MUTED = (186, 200, 224)
FLASH_BG = (150, 20, 28)
CELL_OFF = (9, 20, 106)
CELL_ON = (250, 204, 21)
CELL_MATCHED = (34, 197, 94)


class Screen(Protocol):
    def handle_event(self, event: pygame.event.Event) -> None: ...
    def render(self, surface: pygame.Surface) -> None: ...


@dataclass(frozen=True, slots=True)
class MenuItem:
    label: str | Callable[[], str]
    action: Callable[[], None]

    def text(self) -> str:
        return self.label() if callable(self.label) else self.label


class App:
    def __init__(self, surface: pygame.Surface, font: pygame.font.Font) -> None:
        self._surface = surface
        self._font = font
        self._screens: list[Screen] = []
        self._running = True

    @property
    def running(self) -> bool:
        return self._running

    @property
    def font(self) -> pygame.font.Font:
        return self._font

    @property
    def top(self) -> Screen | None:
        return self._screens[-1] if self._screens else None

    def push(self, screen: Screen) -> None:
        self._screens.append(screen)

    def pop(self) -> None:
        # Never pop the last/root screen; root handles its own quit/back behavior.
        if len(self._screens) > 1:
            self._screens.pop()

    def quit(self) -> None:
        self._running = False

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.QUIT:
            self.quit()
            return
        if not self._screens:
            return
        self._screens[-1].handle_event(event)

    def render(self) -> None:
        if not self._screens:
            return
        self._screens[-1].render(self._surface)


def _draw_frame(
    surface: pygame.Surface,
    title: str,
    tag: str,
    *,
    title_font: pygame.font.Font,
    tag_font: pygame.font.Font,
    bg: tuple[int, int, int] = BG,
) -> pygame.Rect:
    """Fill the window with the standard frame and header; returns the content rect."""

    w, h = surface.get_size()
    surface.fill(bg)
    margin = max(10, min(26, w // 34))
    frame = pygame.Rect(margin, margin, max(260, w - margin * 2), max(220, h - margin * 2))
    pygame.draw.rect(surface, PANEL_BG, frame)
    pygame.draw.rect(surface, BORDER, frame, 2)

    header_h = max(34, min(52, h // 8))
    header = pygame.Rect(frame.x + 2, frame.y + 2, frame.w - 4, header_h)
    pygame.draw.rect(surface, HEADER_BG, header)
    pygame.draw.line(surface, BORDER, (header.x, header.bottom), (header.right, header.bottom), 1)

    tag_img = tag_font.render(tag, True, TEXT_MUTED)
    surface.blit(tag_img, (header.x + 12, header.y + (header.h - tag_img.get_height()) // 2))
    title_img = title_font.render(title, True, TEXT_MAIN)
    surface.blit(title_img, title_img.get_rect(center=(frame.centerx, header.centery)))

    return pygame.Rect(frame.x + 14, header.bottom + 12, frame.w - 28, frame.bottom - header.bottom - 24)


class MenuScreen:
    def __init__(self, app: App, title: str, items: list[MenuItem], *, is_root: bool = False) -> None:
        self._app = app
        self._title = title
        self._items = items
        self._selected = 0
        self._is_root = is_root
        self._title_font = pygame.font.Font(None, 42)
        self._item_font = pygame.font.Font(None, 32)
        self._hint_font = pygame.font.Font(None, 22)

    @property
    def selected(self) -> int:
        return self._selected

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        key = event.key
        if key in (pygame.K_UP, pygame.K_w):
            self._move(-1)
        elif key in (pygame.K_DOWN, pygame.K_s):
            self._move(1)
        elif key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
            self._activate()
        elif key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
            self._back()

    def _move(self, delta: int) -> None:
        if not self._items:
            return
        self._selected = (self._selected + delta) % len(self._items)

    def _activate(self) -> None:
        if not self._items:
            return
        self._items[self._selected].action()

    def _back(self) -> None:
        if self._is_root:
            self._app.quit()
        else:
            self._app.pop()

    def render(self, surface: pygame.Surface) -> None:
        content = _draw_frame(
            surface, self._title, "MENU", title_font=self._title_font, tag_font=self._hint_font
        )

        item_count = max(1, len(self._items))
        row_h = max(30, min(44, content.h // (item_count + 2)))
        gap = 6
        total_h = row_h * item_count + gap * (item_count - 1)
        y = content.y + max(8, (content.h - total_h) // 2)

        for idx, item in enumerate(self._items):
            row = pygame.Rect(content.x + 40, y, content.w - 80, row_h)
            selected = idx == self._selected
            pygame.draw.rect(surface, (244, 248, 255) if selected else CELL_OFF, row)
            pygame.draw.rect(surface, (120, 142, 196) if selected else (62, 84, 152), row, 2 if selected else 1)
            color = (14, 26, 74) if selected else TEXT_MAIN
            text = self._item_font.render(item.text(), True, color)
            surface.blit(text, (row.x + 10, row.y + (row.h - text.get_height()) // 2))
            y += row_h + gap

        foot = self._hint_font.render("Enter/Space: Select  |  Esc/Backspace: Back", True, TEXT_MUTED)
        surface.blit(foot, foot.get_rect(midbottom=(content.centerx, content.bottom + 8)))


@dataclass(frozen=True, slots=True)
class _SettingRow:
    label: str
    read: Callable[[], str]
    adjust: Callable[[int], None]


class SettingsScreen:
    """Left/Right adjusts the selected value; every change is saved at once."""

    def __init__(self, app: App, *, engine: NBackGame, store: SettingsStore) -> None:
        self._app = app
        self._engine = engine
        self._store = store
        self._selected = 0
        self._title_font = pygame.font.Font(None, 42)
        self._row_font = pygame.font.Font(None, 32)
        self._hint_font = pygame.font.Font(None, 22)
        self._rows = [
            _SettingRow(
                "Number of events per game",
                lambda: str(self._engine.config.sequence_length),
                lambda d: self._apply(sequence_length=max(1, self._engine.config.sequence_length + d)),
            ),
            _SettingRow(
                "Grid",
                lambda: "5x5" if self._engine.config.alphabet_size == 25 else "3x3",
                lambda d: self._apply(alphabet_size=9 if self._engine.config.alphabet_size == 25 else 25),
            ),
            _SettingRow(
                "Percent match",
                lambda: f"{self._engine.config.match_percentage}%",
                lambda d: self._apply(
                    match_percentage=min(100, max(0, self._engine.config.match_percentage + 5 * d))
                ),
            ),
            _SettingRow(
                "Time between events (ms)",
                lambda: str(int(round(self._engine.config.event_interval_s * 1000.0))),
                lambda d: self._apply(event_interval_s=max(0.5, self._engine.config.event_interval_s + 0.25 * d)),
            ),
            _SettingRow(
                "N-back value",
                lambda: str(self._engine.config.n_back),
                lambda d: self._apply(n_back=max(1, self._engine.config.n_back + d)),
            ),
        ]

    def _apply(self, **changes: object) -> None:
        setters: dict[str, Callable[[Any], None]] = {
            "sequence_length": self._engine.set_sequence_length,
            "alphabet_size": self._engine.set_alphabet_size,
            "match_percentage": self._engine.set_match_percentage,
            "event_interval_s": self._engine.set_event_interval_s,
            "n_back": self._engine.set_n_back,
        }
        for name, value in changes.items():
            setters[name](value)
        self._store.update(**changes)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        if event.key in (pygame.K_UP, pygame.K_w):
            self._selected = (self._selected - 1) % len(self._rows)
        elif event.key in (pygame.K_DOWN, pygame.K_s):
            self._selected = (self._selected + 1) % len(self._rows)
        elif event.key in (pygame.K_LEFT, pygame.K_a):
            self._rows[self._selected].adjust(-1)
        elif event.key in (pygame.K_RIGHT, pygame.K_d):
            self._rows[self._selected].adjust(1)
        elif event.key in (pygame.K_ESCAPE, pygame.K_BACKSPACE, pygame.K_RETURN):
            self._app.pop()

    def render(self, surface: pygame.Surface) -> None:
        content = _draw_frame(
            surface,
            "Configure Game Settings",
            "SETTINGS",
            title_font=self._title_font,
            tag_font=self._hint_font,
        )
        y = content.y + 20
        for idx, row in enumerate(self._rows):
            selected = idx == self._selected
            color = CELL_ON if selected else TEXT_MAIN
            label = self._row_font.render(row.label, True, color)
            value = self._row_font.render(f"<  {row.read()}  >", True, color)
            surface.blit(label, (content.x + 40, y))
            surface.blit(value, value.get_rect(topright=(content.right - 40, y)))
            y += 48
        foot = self._hint_font.render("Up/Down: Select  |  Left/Right: Change  |  Esc: Back", True, TEXT_MUTED)
        surface.blit(foot, foot.get_rect(midbottom=(content.centerx, content.bottom + 8)))


class NBackGameScreen:
    """Plays one game per visit; leaving the screen stops the session."""

    def __init__(
        self,
        app: App,
        *,
        engine: NBackGame,
        pump: Callable[[], None] | None = None,
    ) -> None:
        self._app = app
        self._engine = engine
        self._pump = pump
        self._error: str | None = None
        self._title_font = pygame.font.Font(None, 42)
        self._small_font = pygame.font.Font(None, 28)
        self._letter_font = pygame.font.Font(None, 140)
        self._score_font = pygame.font.Font(None, 40)
        self._start()

    @property
    def error(self) -> str | None:
        return self._error

    def _start(self) -> None:
        try:
            self._engine.start_game()
            self._error = None
        except ConfigurationError as exc:
            self._error = str(exc)

    def _leave(self) -> None:
        self._engine.stop_game()
        self._app.pop()

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        snap = self._engine.snapshot()
        if event.key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
            self._leave()
            return
        if snap.finished or self._error is not None:
            if event.key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
                self._start()
            return
        if event.key in (pygame.K_a, pygame.K_LEFT):
            self._engine.check_visual_match()
        elif event.key in (pygame.K_l, pygame.K_RIGHT):
            self._engine.check_audio_match()

    def render(self, surface: pygame.Surface) -> None:
        self._engine.update()
        if self._pump is not None:
            self._pump()
        snap = self._engine.snapshot()

        title = f"{snap.n_back}-Back {snap.game_type.label} Game"
        content = _draw_frame(
            surface,
            title,
            "GAME",
            title_font=self._title_font,
            tag_font=self._small_font,
            bg=FLASH_BG if snap.flash_failure else BG,
        )
        if snap.flash_failure:
            pygame.draw.rect(surface, FLASH_BG, content)

        if self._error is not None:
            self._blit_center(surface, self._small_font, f"Cannot start: {self._error}", content.center)
            self._blit_center(
                surface,
                self._small_font,
                "Adjust the settings, then press Enter to retry or Esc to go back.",
                (content.centerx, content.centery + 36),
            )
            return

        progress = f"Event {snap.current_index + 1}/{snap.sequence_length}"
        self._blit_center(surface, self._small_font, progress, (content.centerx, content.y + 14))

        stage = pygame.Rect(content.x, content.y + 36, content.w, content.h - 110)
        if snap.game_type is GameType.AUDIO_VISUAL:
            left = pygame.Rect(stage.x, stage.y, stage.w // 2, stage.h)
            right = pygame.Rect(stage.centerx, stage.y, stage.w // 2, stage.h)
            self._draw_grid(surface, left, snap)
            self._draw_letter(surface, right, snap)
        elif snap.game_type is GameType.AUDIO:
            self._draw_letter(surface, stage, snap)
        else:
            self._draw_grid(surface, stage, snap)

        keys = "A/Left: Match" if snap.game_type is GameType.VISUAL else (
            "L/Right: Match" if snap.game_type is GameType.AUDIO else "A/Left: Position match  |  L/Right: Audio match"
        )
        self._blit_center(surface, self._small_font, keys, (content.centerx, content.bottom - 60))
        self._blit_center(
            surface,
            self._score_font,
            f"Score: {snap.score}    High score: {snap.highscore}",
            (content.centerx, content.bottom - 24),
        )

        if snap.finished:
            self._draw_finished(surface, content, snap)

    def _draw_grid(self, surface: pygame.Surface, rect: pygame.Rect, snap: NBackSnapshot) -> None:
        side = snap.grid_side
        if side <= 0:
            return
        cell = max(12, min(rect.w, rect.h) // side - 8)
        total = cell * side + 8 * (side - 1)
        x0 = rect.centerx - total // 2
        y0 = rect.centery - total // 2
        active = -1 if snap.visual_value is None else snap.visual_value - 1
        for row in range(side):
            for col in range(side):
                idx = row * side + col
                cell_rect = pygame.Rect(x0 + col * (cell + 8), y0 + row * (cell + 8), cell, cell)
                color = CELL_OFF
                if idx == active:
                    color = CELL_MATCHED if snap.visual_matched else CELL_ON
                pygame.draw.rect(surface, color, cell_rect, border_radius=6)
                pygame.draw.rect(surface, (62, 84, 152), cell_rect, 1, border_radius=6)

    def _draw_letter(self, surface: pygame.Surface, rect: pygame.Rect, snap: NBackSnapshot) -> None:
        color = CELL_MATCHED if snap.audio_matched else TEXT_MAIN
        self._blit_center(surface, self._letter_font, snap.audio_letter or "-", rect.center, color=color)

    def _draw_finished(self, surface: pygame.Surface, content: pygame.Rect, snap: NBackSnapshot) -> None:
        box = pygame.Rect(0, 0, min(460, content.w - 40), 170)
        box.center = content.center
        pygame.draw.rect(surface, HEADER_BG, box)
        pygame.draw.rect(surface, BORDER, box, 2)
        self._blit_center(surface, self._score_font, "Game Finished!", (box.centerx, box.y + 34))
        self._blit_center(surface, self._small_font, f"Score: {snap.score}", (box.centerx, box.y + 80))
        self._blit_center(
            surface,
            self._small_font,
            "Enter: Play again  |  Esc: Home",
            (box.centerx, box.bottom - 30),
            color=TEXT_MUTED,
        )

    @staticmethod
    def _blit_center(
        surface: pygame.Surface,
        font: pygame.font.Font,
        text: str,
        center: tuple[int, int],
        *,
        color: tuple[int, int, int] = TEXT_MAIN,
    ) -> None:
        img = font.render(text, True, color)
        surface.blit(img, img.get_rect(center=center))


def _configure_logging() -> None:
    level_name = os.environ.get(LOG_LEVEL_ENV, "WARNING").strip().upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def run(*, max_frames: int | None = None, event_injector: Callable[[int], None] | None = None) -> int:
    _configure_logging()
    pygame.init()

    pygame.display.set_caption("N-Back Trainer")
    surface = pygame.display.set_mode(WINDOW_SIZE, pygame.RESIZABLE)

    font = pygame.font.Font(None, 36)
    clock = pygame.time.Clock()

    app = App(surface=surface, font=font)

    settings = SettingsStore(SettingsStore.default_path())
    db_path = default_db_path()
    speaker = OfflineTtsSpeaker()

    def record_attempt(result: NBackAttemptResult) -> None:
        try:
            record_nback_attempt(db_path=db_path, result=result, app_version=APP_VERSION)
        except Exception:
            logger.warning("could not record attempt history", exc_info=True)

    engine = build_nback_engine(
        clock=RealClock(),
        high_scores=SqliteHighScoreStore(db_path),
        speaker=speaker,
        config=settings.config,
        on_finished=record_attempt,
    )

    def set_mode(toggle: Callable[[], None]) -> None:
        toggle()
        settings.update(game_type=engine.selected_game_type())

    def open_game() -> None:
        app.push(NBackGameScreen(app, engine=engine, pump=speaker.update))

    main_items = [
        MenuItem("Play", open_game),
        MenuItem(
            lambda: f"Visual: {'ON' if engine.visual_selected else 'OFF'}",
            lambda: set_mode(engine.toggle_visual_selection),
        ),
        MenuItem(
            lambda: f"Audio: {'ON' if engine.audio_selected else 'OFF'}",
            lambda: set_mode(engine.toggle_audio_selection),
        ),
        MenuItem(
            lambda: f"Settings  (high score {engine.highscore})",
            lambda: app.push(SettingsScreen(app, engine=engine, store=settings)),
        ),
        MenuItem("Quit", app.quit),
    ]

    app.push(MenuScreen(app, "N-Back", main_items, is_root=True))

    frame = 0
    try:
        while app.running:
            if event_injector is not None:
                event_injector(frame)

            for event in pygame.event.get():
                app.handle_event(event)

            app.render()

            pygame.display.flip()

            frame += 1
            if max_frames is not None and frame >= max_frames:
                break

            clock.tick(TARGET_FPS)
    finally:
        engine.shutdown()
        speaker.stop()
        pygame.quit()

    return 0
