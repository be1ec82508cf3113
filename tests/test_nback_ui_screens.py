from __future__ import annotations

import os
from pathlib import Path

os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
os.environ.setdefault("SDL_AUDIODRIVER", "dummy")
os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")

import pygame
import pytest

from nback_trainer.app import App, MenuItem, MenuScreen, NBackGameScreen, SettingsScreen
from nback_trainer.nback_core import ConfigurationError
from nback_trainer.nback_engine import FakeNBackEngine
from nback_trainer.settings import SettingsStore


def _key(key: int) -> pygame.event.Event:
    return pygame.event.Event(pygame.KEYDOWN, {"key": key, "unicode": ""})


@pytest.fixture
def app():
    pygame.init()
    surface = pygame.display.set_mode((960, 540))
    app = App(surface=surface, font=pygame.font.Font(None, 36))
    app.push(MenuScreen(app, "Root", [MenuItem("Noop", lambda: None)], is_root=True))
    yield app
    pygame.quit()


class RejectingEngine(FakeNBackEngine):
    def start_game(self, size=None, combinations=None, percent_match=None) -> None:
        self.calls.append("start_game")
        raise ConfigurationError("sequence_length must be greater than n_back")


def test_game_screen_starts_and_forwards_keys(app) -> None:
    engine = FakeNBackEngine()
    screen = NBackGameScreen(app, engine=engine)
    app.push(screen)
    assert engine.calls == ["start_game"]

    app.handle_event(_key(pygame.K_a))
    app.handle_event(_key(pygame.K_RIGHT))
    app.handle_event(_key(pygame.K_LEFT))
    app.handle_event(_key(pygame.K_l))
    app.render()

    assert engine.calls == [
        "start_game",
        "check_visual_match",
        "check_audio_match",
        "check_visual_match",
        "check_audio_match",
    ]

    app.handle_event(_key(pygame.K_ESCAPE))
    assert engine.calls[-1] == "stop_game"
    assert app.top is not screen


def test_game_screen_reports_configuration_errors(app) -> None:
    engine = RejectingEngine()
    screen = NBackGameScreen(app, engine=engine)
    app.push(screen)
    assert screen.error is not None
    app.render()

    # Match keys are ignored while the error is shown; Enter retries.
    app.handle_event(_key(pygame.K_a))
    app.handle_event(_key(pygame.K_RETURN))
    assert engine.calls == ["start_game", "start_game"]


def test_settings_screen_updates_engine_and_store(app, tmp_path: Path) -> None:
    engine = FakeNBackEngine()
    store = SettingsStore(tmp_path / "settings.json")
    screen = SettingsScreen(app, engine=engine, store=store)
    app.push(screen)

    app.handle_event(_key(pygame.K_RIGHT))  # events per game +1
    app.handle_event(_key(pygame.K_DOWN))
    app.handle_event(_key(pygame.K_RIGHT))  # grid 3x3 -> 5x5
    app.handle_event(_key(pygame.K_DOWN))
    app.handle_event(_key(pygame.K_LEFT))  # percent match -5
    app.handle_event(_key(pygame.K_DOWN))
    app.handle_event(_key(pygame.K_RIGHT))  # interval +250 ms
    app.handle_event(_key(pygame.K_DOWN))
    app.handle_event(_key(pygame.K_RIGHT))  # N +1
    app.render()

    expected = (11, 25, 25, 2.25, 3)
    cfg = engine.config
    assert (cfg.sequence_length, cfg.alphabet_size, cfg.match_percentage, cfg.event_interval_s, cfg.n_back) == expected
    saved = SettingsStore(store.path).config
    assert (saved.sequence_length, saved.alphabet_size, saved.match_percentage, saved.event_interval_s, saved.n_back) == expected

    app.handle_event(_key(pygame.K_ESCAPE))
    assert app.top is not screen


def test_menu_wraps_and_activates(app) -> None:
    picked: list[str] = []
    menu = MenuScreen(
        app,
        "Menu",
        [MenuItem("One", lambda: picked.append("one")), MenuItem(lambda: "Two", lambda: picked.append("two"))],
    )
    app.push(menu)

    app.handle_event(_key(pygame.K_UP))
    assert menu.selected == 1
    app.handle_event(_key(pygame.K_RETURN))
    app.render()
    assert picked == ["two"]

    app.handle_event(_key(pygame.K_ESCAPE))
    assert app.top is not menu
