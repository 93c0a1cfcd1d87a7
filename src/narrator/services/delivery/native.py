"""Native-engine delivery backend.

The relay process has no audio of its own, so speech runs in a child
`narrator.speech_host` process. The child is provisioned lazily, talked to
with line-delimited JSON requests, and thrown away whenever it stops
answering. Every request is tracked until its response arrives or its
deadline passes.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
import uuid
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Sequence

from narrator.errors import DeliveryError, DeliveryTimeout, DeliveryUnavailable
from narrator.schemas.reader_settings import VoiceSettings

from .base import DeliveryBackend

logger = logging.getLogger(__name__)

DEFAULT_HOST_COMMAND = (sys.executable, "-m", "narrator.speech_host")


@dataclass
class _SpeechHostHandle:
    """One running speech host and the requests still waiting on it."""

    process: asyncio.subprocess.Process
    pending: Dict[str, "asyncio.Future[Dict[str, Any]]"] = field(default_factory=dict)
    reader: Optional["asyncio.Task[None]"] = None

    @property
    def alive(self) -> bool:
        return self.process.returncode is None


class NativeSpeechBackend(DeliveryBackend):
    name = "native"

    def __init__(
        self,
        *,
        command: Optional[Sequence[str]] = None,
        request_timeout: float = 2.0,
        close_grace: float = 0.5,
        env: Optional[Mapping[str, str]] = None,
    ):
        self._command = list(command or DEFAULT_HOST_COMMAND)
        self._env = dict(env) if env is not None else None
        self._request_timeout = request_timeout
        self._close_grace = close_grace
        self._host: Optional[_SpeechHostHandle] = None
        self._provisioning: Optional[asyncio.Task[_SpeechHostHandle]] = None

    @property
    def running(self) -> bool:
        return self._host is not None and self._host.alive

    async def ensure_ready(self) -> bool:
        if self.running:
            return False

        # Concurrent callers share one provisioning task
        task = self._provisioning
        if task is None:
            task = asyncio.create_task(self._provision(), name="speech-host-provision")
            self._provisioning = task
            task.add_done_callback(self._provisioning_done)
        await asyncio.shield(task)
        return True

    def _provisioning_done(self, task: "asyncio.Task[_SpeechHostHandle]") -> None:
        if self._provisioning is task:
            self._provisioning = None

    async def _provision(self) -> _SpeechHostHandle:
        stale, self._host = self._host, None
        if stale is not None:
            await self._shutdown(stale)

        try:
            process = await asyncio.create_subprocess_exec(
                *self._command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                env=self._env,
            )
        except OSError as e:
            raise DeliveryUnavailable("provision", f"could not start speech host: {e}") from e

        handle = _SpeechHostHandle(process=process)
        handle.reader = asyncio.create_task(
            self._read_responses(handle), name=f"speech-host-reader-{process.pid}"
        )
        self._host = handle
        logger.info(f"Speech host started (pid {process.pid})")
        return handle

    async def _read_responses(self, handle: _SpeechHostHandle) -> None:
        stdout = handle.process.stdout
        assert stdout is not None
        while True:
            line = await stdout.readline()
            if not line:
                break
            try:
                payload = json.loads(line)
            except ValueError:
                logger.warning(f"Ignoring non-JSON line from speech host: {line[:80]!r}")
                continue
            if not isinstance(payload, dict):
                continue
            future = handle.pending.pop(str(payload.get("id")), None)
            if future is not None and not future.done():
                future.set_result(payload)

        logger.info(f"Speech host output closed (pid {handle.process.pid})")
        for future in list(handle.pending.values()):
            if not future.done():
                future.set_exception(DeliveryError("request", "speech host exited"))
        handle.pending.clear()

    async def _request(
        self,
        action: str,
        payload: Optional[Dict[str, Any]] = None,
        *,
        handle: Optional[_SpeechHostHandle] = None,
    ) -> Dict[str, Any]:
        handle = handle or self._host
        if handle is None or not handle.alive:
            raise DeliveryUnavailable(action, "speech host is not running")

        stdin = handle.process.stdin
        assert stdin is not None
        request_id = uuid.uuid4().hex
        future: asyncio.Future[Dict[str, Any]] = asyncio.get_running_loop().create_future()
        handle.pending[request_id] = future
        message = {"id": request_id, "action": action, **(payload or {})}

        try:
            stdin.write((json.dumps(message) + "\n").encode("utf-8"))
            await stdin.drain()
            return await asyncio.wait_for(future, timeout=self._request_timeout)
        except asyncio.TimeoutError:
            raise DeliveryTimeout(
                action, f"no response within {self._request_timeout:g}s"
            ) from None
        except (BrokenPipeError, ConnectionResetError) as e:
            raise DeliveryError(action, f"speech host pipe closed: {e}") from e
        finally:
            handle.pending.pop(request_id, None)

    @staticmethod
    def _require_success(action: str, response: Dict[str, Any]) -> Dict[str, Any]:
        if not response.get("success"):
            raise DeliveryError(action, str(response.get("error") or "speech host reported failure"))
        return response

    async def start(self, text: str, settings: VoiceSettings) -> Dict[str, Any]:
        response = await self._request(
            "playTTS",
            {"text": text, "voiceSettings": settings.model_dump(by_alias=True)},
        )
        logger.debug(f"playTTS response: {response}")
        return self._require_success("playTTS", response)

    async def stop(self) -> Dict[str, Any]:
        response = await self._request("stopTTS")
        return self._require_success("stopTTS", response)

    async def status(self) -> Dict[str, Any]:
        return await self._request("getStatus")

    async def is_speaking(self) -> bool:
        if not self.running:
            return False
        try:
            status = await self.status()
        except DeliveryError as e:
            logger.debug(f"Speech host status unavailable: {e}")
            return False
        return bool(status.get("isSpeaking"))

    async def discard(self) -> None:
        handle, self._host = self._host, None
        if handle is not None:
            await self._shutdown(handle)

    async def _shutdown(self, handle: _SpeechHostHandle) -> None:
        process = handle.process
        if handle.alive:
            try:
                await self._request("close", handle=handle)
            except DeliveryError as e:
                logger.info(f"Speech host did not accept close ({e}), terminating")
            try:
                await asyncio.wait_for(process.wait(), timeout=self._close_grace)
            except asyncio.TimeoutError:
                logger.warning(f"Killing unresponsive speech host (pid {process.pid})")
                with suppress(ProcessLookupError):
                    process.kill()
                await process.wait()

        if handle.reader is not None and not handle.reader.done():
            handle.reader.cancel()
            with suppress(asyncio.CancelledError):
                await handle.reader
        logger.info(f"Speech host stopped (pid {process.pid})")

    def describe(self) -> Dict[str, Any]:
        handle = self._host
        return {
            "name": self.name,
            "running": self.running,
            "pid": handle.process.pid if handle is not None else None,
        }


__all__ = ["NativeSpeechBackend", "DEFAULT_HOST_COMMAND"]
