from __future__ import annotations

import asyncio
import json
from typing import Any

import numpy as np
import sounddevice as sd
import websockets

from voxturn.config import RecognitionSettings
from voxturn.errors import CapabilityUnavailable, RecognitionTransientError
from voxturn.recognition.base import RecognitionEngine, RecognitionListener
from voxturn.telemetry.logging import get_logger


class RealTimeSTTRecognizer(RecognitionEngine):
    """Streams microphone audio to a realtime STT websocket.

    The server replies with ``{"type": "speech_start"}`` and
    ``{"type": "transcript", "index": n, "text": ..., "is_final": bool}``
    messages. Closing the socket from either side ends the session.
    """

    def __init__(self, settings: RecognitionSettings, lang: str | None = None) -> None:
        self.lang = lang or settings.lang
        self._ws_url = settings.base_url.rstrip("/") + "/ws"
        self._auth_token = settings.auth_token
        self._sample_rate = settings.sample_rate
        self._frame_samples = int(settings.sample_rate * settings.frame_ms / 1000)
        self._device = settings.input_device
        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue(maxsize=256)
        self._stream: sd.InputStream | None = None
        self._task: asyncio.Task[None] | None = None
        self._listener: RecognitionListener | None = None
        self._logger = get_logger(__name__)

    def start(self, listener: RecognitionListener) -> None:
        if self._task is not None:
            return
        self._ensure_input_device()
        self._listener = listener
        loop = asyncio.get_running_loop()

        def callback(indata, frames, time_info, status) -> None:  # type: ignore[override]
            if status:
                self._logger.warning("recognition.capture.status", status=str(status))
            pcm = (indata.copy() * (2**15 - 1)).astype(np.int16).tobytes()
            loop.call_soon_threadsafe(self._offer, pcm)

        stream: sd.InputStream | None = None
        try:
            stream = sd.InputStream(
                samplerate=self._sample_rate,
                channels=1,
                blocksize=self._frame_samples,
                dtype="float32",
                callback=callback,
                device=self._device,
            )
            stream.start()
        except (sd.PortAudioError, ValueError) as exc:
            if stream is not None:
                stream.close()
            self._listener = None
            raise RecognitionTransientError("audio-capture", str(exc)) from exc
        self._stream = stream
        self._task = asyncio.create_task(self._run())

    def stop(self) -> None:
        self._close_stream()
        if self._task is not None:
            self._task.cancel()
            self._task = None

    def _ensure_input_device(self) -> None:
        try:
            sd.query_devices(self._device, kind="input")
        except (ValueError, sd.PortAudioError) as exc:
            raise CapabilityUnavailable(f"no audio input device: {exc}") from exc

    def _offer(self, pcm: bytes) -> None:
        try:
            self._queue.put_nowait(pcm)
        except asyncio.QueueFull:
            self._logger.warning("recognition.capture.overflow")

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self._auth_token:
            headers["Authorization"] = f"Bearer {self._auth_token}"
        return headers

    async def _run(self) -> None:
        listener = self._listener
        assert listener is not None
        try:
            async with websockets.connect(self._ws_url, additional_headers=self._headers()) as ws:
                await ws.send(
                    json.dumps(
                        {
                            "type": "config",
                            "lang": self.lang,
                            "sample_rate": self._sample_rate,
                            "continuous": True,
                            "interim_results": True,
                        }
                    )
                )
                producer = asyncio.create_task(self._produce_audio(ws))
                try:
                    async for message in ws:
                        self._dispatch(listener, json.loads(message))
                finally:
                    producer.cancel()
        except asyncio.CancelledError:
            return
        except (OSError, websockets.WebSocketException, json.JSONDecodeError) as exc:
            self._logger.warning("recognition.session.failed", error=str(exc))
            listener.on_error("network", str(exc))
        self._close_stream()
        self._task = None
        listener.on_end()

    def _dispatch(self, listener: RecognitionListener, payload: dict[str, Any]) -> None:
        kind = payload.get("type")
        if kind == "speech_start":
            listener.on_speech_start()
        elif kind == "transcript":
            listener.on_result(
                int(payload.get("index", 0)),
                str(payload.get("text", "")),
                bool(payload.get("is_final", False)),
            )
        elif kind == "error":
            listener.on_error(str(payload.get("code", "unknown")), payload.get("detail"))

    async def _produce_audio(self, ws: Any) -> None:
        while True:
            pcm = await self._queue.get()
            if pcm is None:
                break
            await ws.send(pcm)

    def _close_stream(self) -> None:
        if self._stream is not None:
            self._stream.stop()
            self._stream.close()
            self._stream = None
            if not self._queue.full():
                self._queue.put_nowait(None)


def realtime_engine_factory(settings: RecognitionSettings):
    def factory(lang: str) -> RecognitionEngine:
        return RealTimeSTTRecognizer(settings, lang=lang)

    return factory


__all__ = ["RealTimeSTTRecognizer", "realtime_engine_factory"]
