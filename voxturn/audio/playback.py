from __future__ import annotations

import asyncio
from typing import Callable, Protocol

from voxturn.errors import PlaybackFailed
from voxturn.telemetry.logging import get_logger


class Synthesizer(Protocol):
    async def synthesize(self, text: str, voice: str, lang: str) -> bytes: ...


class PlayableResource(Protocol):
    on_ended: Callable[[], None] | None
    on_error: Callable[[str], None] | None
    playback_rate: float
    muted: bool
    current_time: float

    @property
    def playing(self) -> bool: ...

    def play(self) -> None: ...

    def pause(self) -> None: ...

    def close(self) -> None: ...


class ResourceFactory(Protocol):
    def create_resource(self, audio: bytes) -> PlayableResource: ...


class PlaybackEngine:
    """Owns the single audio output resource.

    ``speak`` always tears down whatever is playing or being fetched before
    starting the next clip, so two replies never overlap. Callers learn about
    playback only through ``on_started``/``on_ended``/``on_error``; a clip cut
    off by ``stop_immediately`` reports nothing.
    """

    def __init__(
        self,
        synthesizer: Synthesizer,
        output: ResourceFactory,
        voice: str,
        lang: str,
        rate: float = 0.85,
    ) -> None:
        self._synthesizer = synthesizer
        self._output = output
        self.voice = voice
        self.lang = lang
        self._rate = rate
        self._muted = False
        self._resource: PlayableResource | None = None
        self._fetch_task: asyncio.Task[None] | None = None
        self._generation = 0
        self.on_started: Callable[[], None] | None = None
        self.on_ended: Callable[[], None] | None = None
        self.on_error: Callable[[str], None] | None = None
        self._logger = get_logger(__name__)

    @property
    def is_vocalizing(self) -> bool:
        return self._resource is not None and self._resource.playing

    @property
    def busy(self) -> bool:
        return self._fetch_task is not None or self.is_vocalizing

    @property
    def muted(self) -> bool:
        return self._muted

    def set_muted(self, muted: bool) -> None:
        self._muted = muted
        if self._resource is not None:
            self._resource.muted = muted
        self._logger.info("playback.muted", muted=muted)

    def speak(self, text: str) -> None:
        self.stop_immediately()
        generation = self._generation
        self._fetch_task = asyncio.create_task(self._play(generation, text))

    def stop_immediately(self) -> bool:
        """Barge-in primitive. Returns True if something was playing or pending."""
        self._generation += 1
        interrupted = False
        task = self._fetch_task
        self._fetch_task = None
        if task is not None and not task.done():
            task.cancel()
            interrupted = True
        resource = self._resource
        self._resource = None
        if resource is not None:
            interrupted = interrupted or resource.playing
            resource.pause()
            resource.current_time = 0
            resource.close()
        if interrupted:
            self._logger.info("playback.interrupted")
        return interrupted

    async def _play(self, generation: int, text: str) -> None:
        try:
            audio = await self._synthesizer.synthesize(text, self.voice, self.lang)
            if generation != self._generation:
                return
            resource = self._output.create_resource(audio)
            resource.playback_rate = self._rate
            resource.muted = self._muted
            resource.on_ended = lambda: self._handle_end(generation, None)
            resource.on_error = lambda reason: self._handle_end(generation, reason)
            self._resource = resource
            self._fetch_task = None
            resource.play()
        except PlaybackFailed as exc:
            self._abort(generation, str(exc))
            return
        except Exception as exc:
            # Device and decoder errors from the output backend end the clip like any other failure.
            self._abort(generation, f"{type(exc).__name__}: {exc}")
            return
        self._logger.info("playback.started", voice=self.voice, lang=self.lang, muted=self._muted)
        if self.on_started is not None:
            self.on_started()

    def _abort(self, generation: int, reason: str) -> None:
        if generation == self._generation:
            self._fetch_task = None
        self._handle_end(generation, reason)

    def _handle_end(self, generation: int, error: str | None) -> None:
        if generation != self._generation:
            return
        self._release()
        if error is not None:
            self._logger.error("playback.failed", error=error)
            if self.on_error is not None:
                self.on_error(error)
            return
        self._logger.info("playback.ended")
        if self.on_ended is not None:
            self.on_ended()

    def _release(self) -> None:
        resource = self._resource
        self._resource = None
        if resource is not None:
            resource.close()

    def dispose(self) -> None:
        self.stop_immediately()
        self.on_started = None
        self.on_ended = None
        self.on_error = None


__all__ = ["PlaybackEngine", "Synthesizer", "ResourceFactory", "PlayableResource"]
