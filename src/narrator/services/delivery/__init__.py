"""
Delivery backends.

Two interchangeable strategies implement the same start/stop contract:

- native: speech runs in a child `narrator.speech_host` process (pyttsx3)
- remote: speech is produced by an external web page driven over CDP (playwright)

Exactly one is active per deployment, chosen by `Settings.delivery_backend`.
"""

import os
from pathlib import Path

from narrator.config import Settings

from .base import DeliveryBackend
from .native import DEFAULT_HOST_COMMAND, NativeSpeechBackend
from .remote import RemoteSurfaceBackend


def _speech_host_env() -> dict[str, str]:
    """Return the environment for the speech host, with `src/` importable."""

    env = os.environ.copy()
    src_dir = str(Path(__file__).resolve().parents[3])
    pythonpath = env.get("PYTHONPATH", "")
    if src_dir not in pythonpath.split(os.pathsep):
        env["PYTHONPATH"] = os.pathsep.join(filter(None, [pythonpath, src_dir]))
    return env


def build_backend(settings: Settings) -> DeliveryBackend:
    """Construct the backend selected by the deployment settings."""
    if settings.delivery_backend == "remote":
        return RemoteSurfaceBackend(
            surface_url=settings.remote_surface_url,
            cdp_url=settings.remote_cdp_url,
            stop_selector=settings.remote_stop_selector,
            text_selector=settings.remote_text_selector,
            speak_selector=settings.remote_speak_selector,
            action_timeout=settings.request_timeout_seconds,
            input_settle=settings.remote_input_settle_seconds,
            max_candidate_attempts=settings.remote_max_candidate_attempts,
        )

    command = settings.speech_host_command
    if command is None:
        command = [
            *DEFAULT_HOST_COMMAND,
            "--voice-retry-delay",
            str(settings.voice_retry_delay_seconds),
        ]
    return NativeSpeechBackend(
        command=command,
        request_timeout=settings.request_timeout_seconds,
        env=_speech_host_env(),
    )


__all__ = [
    "DeliveryBackend",
    "NativeSpeechBackend",
    "RemoteSurfaceBackend",
    "build_backend",
]
