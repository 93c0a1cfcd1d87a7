"""
Speech host process.

Runs as a SEPARATE PROCESS owned by the native delivery backend, so the relay
can drop and recreate it whenever it stops answering. Owns a pyttsx3 engine
and speaks a line-delimited JSON protocol over stdin/stdout:

    -> {"id": "...", "action": "playTTS", "text": "...", "voiceSettings": {...}}
    <- {"id": "...", "action": "playTTS", "success": true}

Actions: playTTS, stopTTS, getStatus, close. stdout carries only protocol
lines; logging goes to stderr.

Usage:
    python -m narrator.speech_host
"""

from __future__ import annotations

import argparse
import json
import logging
import queue
import sys
import threading
import time
from contextlib import redirect_stdout
from typing import Any, Callable, Dict, Iterable, Optional, TextIO

import pyttsx3
from pydantic import ValidationError

from narrator.schemas.reader_settings import (
    DEFAULT_VOICE_HINTS,
    VoiceSettings,
)

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.02


class VoiceCatalog:
    """Cached list of engine voices.

    The first query may come back empty while the platform is still
    enumerating voices, so loading is a synchronous fetch followed by one
    bounded retry. Once populated the list is kept for the life of the host.
    """

    def __init__(
        self,
        engine: Any,
        *,
        retry_delay: float = 0.2,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._engine = engine
        self._retry_delay = retry_delay
        self._sleep = sleep
        self._voices: list[Any] = []

    @property
    def voices(self) -> list[Any]:
        return list(self._voices)

    @property
    def loaded(self) -> bool:
        return bool(self._voices)

    def _fetch(self) -> list[Any]:
        voices = self._engine.getProperty("voices")
        return list(voices or [])

    def ensure_loaded(self) -> bool:
        if self._voices:
            return True

        self._voices = self._fetch()
        if not self._voices:
            logger.warning(f"No voices loaded, retrying in {self._retry_delay:g}s")
            self._sleep(self._retry_delay)
            self._voices = self._fetch()

        if self._voices:
            logger.info(f"Loaded {len(self._voices)} voices")
        else:
            logger.warning("Failed to load voices after retry")
        return self.loaded

    def resolve(self, name: str, hints: Iterable[str] = DEFAULT_VOICE_HINTS) -> Optional[Any]:
        """Find ``name`` exactly, else the first voice whose name contains every hint."""
        for voice in self._voices:
            if voice.name == name:
                return voice

        hints = tuple(hints)
        for voice in self._voices:
            if all(hint in voice.name for hint in hints):
                logger.info(f"Voice {name!r} not found, using fallback {voice.name!r}")
                return voice

        logger.warning(f"Voice {name!r} not found, using engine default voice")
        return None


class SpeechHost:
    """Handles protocol requests against a pyttsx3-style engine."""

    def __init__(self, engine: Any, *, voice_retry_delay: float = 0.2, sleep: Callable[[float], None] = time.sleep):
        self._engine = engine
        self._catalog = VoiceCatalog(engine, retry_delay=voice_retry_delay, sleep=sleep)
        self._speaking = False
        self.closed = False

        base_rate = engine.getProperty("rate")
        self._base_rate = base_rate if isinstance(base_rate, (int, float)) and base_rate > 0 else 200
        self._base_pitch = self._probe_pitch()

        engine.connect("started-utterance", self._on_started)
        engine.connect("finished-utterance", self._on_finished)

    @property
    def catalog(self) -> VoiceCatalog:
        return self._catalog

    @property
    def speaking(self) -> bool:
        return self._speaking

    def _probe_pitch(self) -> Optional[float]:
        """Return the driver's neutral pitch, or None when it has no pitch control.

        Drivers without pitch either raise KeyError or print a notice and
        return None.
        """
        try:
            pitch = self._engine.getProperty("pitch")
        except KeyError:
            pitch = None
        if isinstance(pitch, bool) or not isinstance(pitch, (int, float)) or pitch <= 0:
            logger.debug("Engine driver has no pitch control")
            return None
        return pitch

    def _on_started(self, name: Any = None) -> None:
        self._speaking = True

    def _on_finished(self, name: Any = None, completed: bool = True) -> None:
        self._speaking = False

    def initialize(self) -> None:
        self._catalog.ensure_loaded()

    def handle(self, request: Dict[str, Any]) -> Dict[str, Any]:
        action = request.get("action")

        if action == "playTTS":
            return self._play(request)

        if action == "stopTTS":
            self.stop()
            return {"success": True, "action": action}

        if action == "getStatus":
            return {
                "action": action,
                "initialized": self._catalog.loaded,
                "voicesCount": len(self._catalog.voices),
                "isSpeaking": self._speaking,
            }

        if action == "close":
            self.stop()
            self.closed = True
            return {"success": True, "action": action}

        return {"success": False, "error": "Unknown action", "action": action}

    def stop(self) -> None:
        self._engine.stop()
        self._speaking = False

    def _play(self, request: Dict[str, Any]) -> Dict[str, Any]:
        text = request.get("text")
        if not isinstance(text, str) or not text:
            return {"success": False, "error": "No text provided", "action": "playTTS"}
        try:
            settings = VoiceSettings.model_validate(request.get("voiceSettings") or {})
        except ValidationError as e:
            return {"success": False, "error": str(e), "action": "playTTS"}

        # Only one utterance is ever audible
        self.stop()
        self._catalog.ensure_loaded()

        preview = text[:50] + ("..." if len(text) > 50 else "")
        logger.info(f"Playing text: {preview!r}")

        voice = self._catalog.resolve(settings.selected_voice)
        if voice is not None:
            self._engine.setProperty("voice", voice.id)
        self._engine.setProperty("rate", int(self._base_rate * settings.rate))
        self._engine.setProperty("volume", settings.volume)
        if self._base_pitch is not None:
            # Settings pitch is a multiplier around 1.0; drivers use their own scale
            self._engine.setProperty("pitch", round(self._base_pitch * settings.pitch))

        self._engine.say(text)
        self._speaking = True
        return {"success": True, "action": "playTTS"}


def _pump_lines(stream: TextIO, lines: "queue.Queue[Optional[str]]") -> None:
    for line in stream:
        lines.put(line)
    lines.put(None)


def _decode_request(line: str) -> Optional[Dict[str, Any]]:
    try:
        request = json.loads(line)
    except ValueError:
        logger.warning(f"Ignoring malformed request line: {line[:80]!r}")
        return None
    return request if isinstance(request, dict) else None


def serve(host: SpeechHost, engine: Any, stdin: TextIO, stdout: TextIO) -> None:
    """Answer requests from ``stdin`` until EOF or a close request.

    Anything the driver prints is sent to stderr; ``stdout`` carries protocol
    lines only.
    """
    lines: queue.Queue[Optional[str]] = queue.Queue()
    threading.Thread(target=_pump_lines, args=(stdin, lines), daemon=True).start()

    with redirect_stdout(sys.stderr):
        _serve_loop(host, engine, lines, stdout)


def _serve_loop(
    host: SpeechHost,
    engine: Any,
    lines: "queue.Queue[Optional[str]]",
    stdout: TextIO,
) -> None:
    engine.startLoop(False)
    try:
        while not host.closed:
            try:
                line = lines.get(timeout=_POLL_INTERVAL)
            except queue.Empty:
                engine.iterate()
                continue
            if line is None:
                logger.info("Input closed, shutting down")
                break
            if not line.strip():
                continue

            request = _decode_request(line)
            if request is None:
                response: Dict[str, Any] = {"success": False, "error": "Invalid request", "id": None}
            else:
                response = host.handle(request)
                response["id"] = request.get("id")
            stdout.write(json.dumps(response) + "\n")
            stdout.flush()
            engine.iterate()
    finally:
        engine.endLoop()


def main(argv: Optional[list[str]] = None) -> None:  # pragma: no cover - process entrypoint
    parser = argparse.ArgumentParser(description="Narrator speech host")
    parser.add_argument(
        "--voice-retry-delay",
        type=float,
        default=0.2,
        help="Seconds to wait before re-querying an empty voice list",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level for stderr output",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        stream=sys.stderr,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    protocol_out = sys.stdout
    with redirect_stdout(sys.stderr):
        engine = pyttsx3.init()
        host = SpeechHost(engine, voice_retry_delay=args.voice_retry_delay)
        host.initialize()
    serve(host, engine, sys.stdin, protocol_out)


if __name__ == "__main__":  # pragma: no cover - CLI helper
    main()
