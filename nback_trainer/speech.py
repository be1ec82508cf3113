from __future__ import annotations

import importlib.util
import logging
import os
import shutil
import subprocess
import sys
import time
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

DISABLE_TTS_ENV = "NBACK_DISABLE_TTS"
TTS_BACKEND_ENV = "NBACK_TTS_BACKEND"
SUPPORTED_BACKENDS = ("say", "powershell", "pyttsx3-subprocess", "espeak")


class Speaker(Protocol):
    def speak(self, text: str) -> None: ...


class NullSpeaker:
    def speak(self, text: str) -> None:
        return None


class RecordingSpeaker:
    """Collects spoken text instead of playing it."""

    def __init__(self) -> None:
        self.spoken: list[str] = []

    def speak(self, text: str) -> None:
        self.spoken.append(str(text))


class OfflineTtsSpeaker:
    """Best-effort offline TTS in a child process.

    Each letter interrupts whatever is still being said, so the voice never
    lags behind the stimulus stream. ``speak()`` only records the request;
    ``update()`` (called once per frame) launches it. A backend that fails to
    launch is dropped in favour of the next one; with none left the speaker
    goes quiet.
    """

    _max_utterance_s = 4.0
    _rate_wpm = 176

    def __init__(self) -> None:
        self._enabled = False
        self._backends: list[str] = []
        self._pending: str | None = None
        self._active_proc: subprocess.Popen[bytes] | None = None
        self._active_started_s = 0.0

        if os.environ.get(DISABLE_TTS_ENV, "0") == "1":
            return
        if os.environ.get("SDL_AUDIODRIVER", "").strip().lower() == "dummy":
            return

        self._backends = self._resolve_backends()
        self._enabled = bool(self._backends)
        if not self._enabled:
            logger.info("no offline TTS backend found; audio stimuli will be silent")

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def backend(self) -> str | None:
        return self._backends[0] if self._backends else None

    def speak(self, text: str) -> None:
        if not self._enabled:
            return
        phrase = " ".join(str(text).split())
        if phrase:
            self._pending = phrase

    def update(self) -> None:
        if not self._enabled:
            return

        proc = self._active_proc
        if proc is not None:
            overdue = (time.monotonic() - self._active_started_s) > self._max_utterance_s
            if proc.poll() is not None:
                self._active_proc = None
            elif overdue or self._pending is not None:
                self._terminate_process(proc)
                self._active_proc = None

        if self._pending is None:
            return

        text, self._pending = self._pending, None
        while self._enabled:
            launched = self._launch_process(text)
            if launched is not None:
                self._active_proc = launched
                self._active_started_s = time.monotonic()
                return
            self._drop_current_backend()

    def stop(self) -> None:
        self._pending = None
        proc, self._active_proc = self._active_proc, None
        if proc is not None:
            self._terminate_process(proc)

    @staticmethod
    def _terminate_process(proc: subprocess.Popen[bytes]) -> None:
        try:
            proc.terminate()
            proc.wait(timeout=0.5)
        except (OSError, subprocess.TimeoutExpired):
            try:
                proc.kill()
            except OSError:
                pass

    @staticmethod
    def _resolve_backends() -> list[str]:
        forced = os.environ.get(TTS_BACKEND_ENV, "").strip().lower()
        if forced in SUPPORTED_BACKENDS and OfflineTtsSpeaker._backend_available(forced):
            return [forced]

        candidates: list[str] = []
        if sys.platform == "darwin":
            candidates.append("say")
        if os.name == "nt":
            candidates.append("powershell")
        candidates.extend(("pyttsx3-subprocess", "espeak"))
        return [name for name in candidates if OfflineTtsSpeaker._backend_available(name)]

    @staticmethod
    def _backend_available(name: str) -> bool:
        if name == "say":
            return (shutil.which("say") is not None) or Path("/usr/bin/say").exists()
        if name == "powershell":
            return (shutil.which("powershell") is not None) or (shutil.which("pwsh") is not None)
        if name == "pyttsx3-subprocess":
            return importlib.util.find_spec("pyttsx3") is not None
        if name == "espeak":
            return shutil.which("espeak") is not None
        return False

    def _drop_current_backend(self) -> None:
        dropped = self._backends.pop(0) if self._backends else None
        logger.warning("TTS backend %r failed to launch; dropping it", dropped)
        self._enabled = bool(self._backends)

    def _command_for(self, backend: str, text: str) -> list[str] | None:
        if backend == "say":
            return [shutil.which("say") or "/usr/bin/say", "-r", str(self._rate_wpm), text]
        if backend == "espeak":
            return ["espeak", "-s", str(self._rate_wpm), text]
        if backend == "powershell":
            ps_bin = shutil.which("powershell") or shutil.which("pwsh")
            if ps_bin is None:
                return None
            script = (
                "Add-Type -AssemblyName System.Speech; "
                "$s=New-Object System.Speech.Synthesis.SpeechSynthesizer; "
                "$s.Speak(($args -join ' '));"
            )
            return [ps_bin, "-NoProfile", "-NonInteractive", "-Command", script, text]
        if backend == "pyttsx3-subprocess":
            script = (
                "import sys\n"
                "import pyttsx3\n"
                "e=pyttsx3.init()\n"
                f"e.setProperty('rate', {self._rate_wpm})\n"
                "e.say(' '.join(sys.argv[1:]))\n"
                "e.runAndWait()\n"
            )
            return [sys.executable, "-c", script, text]
        return None

    def _launch_process(self, text: str) -> subprocess.Popen[bytes] | None:
        backend = self.backend
        if backend is None:
            return None
        cmd = self._command_for(backend, text)
        if cmd is None:
            return None
        try:
            return subprocess.Popen(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except OSError:
            return None
