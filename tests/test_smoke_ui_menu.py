from __future__ import annotations

import json
import os


def test_ui_smoke_toggle_audio_then_play_and_leave(tmp_path, monkeypatch) -> None:
    # Headless SDL for CI.
    os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
    os.environ.setdefault("SDL_AUDIODRIVER", "dummy")
    monkeypatch.setenv("NBACK_DB_PATH", str(tmp_path / "nback.sqlite3"))
    monkeypatch.setenv("NBACK_SETTINGS_PATH", str(tmp_path / "settings.json"))
    monkeypatch.setenv("NBACK_DISABLE_TTS", "1")

    import pygame

    from nback_trainer.app import run

    def key(k: int) -> None:
        pygame.event.post(pygame.event.Event(pygame.KEYDOWN, {"key": k, "unicode": ""}))

    def inject(frame: int) -> None:
        # Main Menu -> Audio: ON -> Play -> claim both channels -> back to menu
        if frame == 1:
            key(pygame.K_DOWN)
        elif frame == 2:
            key(pygame.K_DOWN)
        elif frame == 3:
            key(pygame.K_RETURN)
        elif frame == 4:
            key(pygame.K_UP)
        elif frame == 5:
            key(pygame.K_UP)
        elif frame == 6:
            key(pygame.K_RETURN)
        elif frame == 8:
            key(pygame.K_a)
        elif frame == 9:
            key(pygame.K_l)
        elif frame == 12:
            key(pygame.K_ESCAPE)

    assert run(max_frames=20, event_injector=inject) == 0

    saved = json.loads((tmp_path / "settings.json").read_text(encoding="utf-8"))
    assert saved["settings"]["game_type"] == "audio_visual"
