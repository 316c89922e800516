from __future__ import annotations

import asyncio
import io
import threading
from typing import Callable, Optional

import numpy as np
import sounddevice as sd
import soundfile as sf

from voxturn.errors import PlaybackFailed
from voxturn.telemetry.logging import get_logger


class AudioResource:
    """One decoded clip with audio-element semantics.

    ``play`` starts (or resumes) output, ``pause`` halts it without firing
    ``on_ended``, ``current_time`` can be rewound, ``muted`` silences output
    while the clip keeps running. ``on_ended``/``on_error`` are delivered on
    the event loop that created the resource.
    """

    def __init__(
        self,
        data: np.ndarray,
        samplerate: int,
        device: str | int | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        if data.ndim == 1:
            data = data.reshape(-1, 1)
        self._source = data.astype(np.float32, copy=False)
        self._data = self._source
        self._samplerate = samplerate
        self._device = device
        self._loop = loop or asyncio.get_running_loop()
        self._lock = threading.Lock()
        self._position = 0
        self._rate = 1.0
        self._muted = False
        self._stream: Optional[sd.OutputStream] = None
        self._pausing = False
        self._closed = False
        self.on_ended: Callable[[], None] | None = None
        self.on_error: Callable[[str], None] | None = None
        self._logger = get_logger(__name__)

    @property
    def duration(self) -> float:
        return self._data.shape[0] / float(self._samplerate)

    @property
    def playing(self) -> bool:
        return self._stream is not None and not self._pausing

    @property
    def muted(self) -> bool:
        return self._muted

    @muted.setter
    def muted(self, value: bool) -> None:
        self._muted = bool(value)

    @property
    def playback_rate(self) -> float:
        return self._rate

    @playback_rate.setter
    def playback_rate(self, rate: float) -> None:
        if rate <= 0:
            raise ValueError("playback_rate must be positive")
        with self._lock:
            progress = self._position / max(self._data.shape[0], 1)
            self._rate = rate
            self._data = _stretch(self._source, rate)
            self._position = int(progress * self._data.shape[0])

    @property
    def current_time(self) -> float:
        return self._position / float(self._samplerate)

    @current_time.setter
    def current_time(self, seconds: float) -> None:
        with self._lock:
            frame = int(max(seconds, 0.0) * self._samplerate)
            self._position = min(frame, self._data.shape[0])

    def play(self) -> None:
        if self._closed:
            raise PlaybackFailed("resource already released")
        if self._stream is not None:
            return
        self._pausing = False
        stream: Optional[sd.OutputStream] = None
        try:
            stream = sd.OutputStream(
                samplerate=self._samplerate,
                channels=self._data.shape[1],
                dtype="float32",
                device=self._device,
                callback=self._fill,
                finished_callback=self._on_stream_finished,
            )
            stream.start()
        except (sd.PortAudioError, ValueError) as exc:
            if stream is not None:
                stream.close()
            raise PlaybackFailed(f"audio output unavailable: {exc}") from exc
        self._stream = stream

    def pause(self) -> None:
        stream = self._stream
        if stream is None:
            return
        self._pausing = True
        try:
            stream.stop()
            stream.close()
        finally:
            self._stream = None

    def close(self) -> None:
        self.pause()
        self._closed = True
        self.on_ended = None
        self.on_error = None

    def _fill(self, outdata, frames, time_info, status) -> None:  # type: ignore[override]
        if status:
            self._logger.warning("audio.output.status", status=str(status))
        with self._lock:
            start = self._position
            end = min(start + frames, self._data.shape[0])
            chunk = self._data[start:end]
            self._position = end
        if self._muted:
            outdata.fill(0)
        else:
            outdata[: len(chunk)] = chunk
            outdata[len(chunk) :] = 0
        if end >= self._data.shape[0]:
            raise sd.CallbackStop

    def _on_stream_finished(self) -> None:
        if self._pausing:
            return
        self._loop.call_soon_threadsafe(self._finish)

    def _finish(self) -> None:
        if self._pausing or self._closed:
            return
        stream = self._stream
        self._stream = None
        if stream is not None:
            stream.close()
        if self._position < self._data.shape[0]:
            self._logger.warning("audio.output.aborted", position=self._position)
            on_error = self.on_error
            if on_error is not None:
                on_error("audio stream aborted before the end of the clip")
            return
        callback = self.on_ended
        if callback is not None:
            callback()


def _stretch(data: np.ndarray, rate: float) -> np.ndarray:
    """Resample so the clip lasts ``1/rate`` times as long at the same sample rate."""
    if rate == 1.0 or data.shape[0] == 0:
        return data
    frames = data.shape[0]
    target = max(int(round(frames / rate)), 1)
    src = np.arange(frames, dtype=np.float64)
    dst = np.linspace(0, frames - 1, target)
    return np.stack([np.interp(dst, src, data[:, ch]) for ch in range(data.shape[1])], axis=1).astype(np.float32)


class AudioOutput:
    """Decodes synthesized audio into playable resources on one output device."""

    def __init__(self, device: str | int | None = None) -> None:
        self._device = device
        self._logger = get_logger(__name__)

    def create_resource(self, audio: bytes) -> AudioResource:
        if not audio:
            raise PlaybackFailed("empty audio payload")
        try:
            with io.BytesIO(audio) as buffer:
                data, samplerate = sf.read(buffer, dtype="float32", always_2d=True)
        except (sf.LibsndfileError, RuntimeError, TypeError) as exc:
            self._logger.error("audio.output.decode_failed", error=str(exc))
            raise PlaybackFailed(f"could not decode audio: {exc}") from exc
        if samplerate <= 0 or data.size == 0:
            raise PlaybackFailed("audio payload has no frames")
        return AudioResource(np.asarray(data), int(samplerate), device=self._device)


__all__ = ["AudioOutput", "AudioResource"]
