from __future__ import annotations

import asyncio
from typing import Callable, Sequence

from voxturn.answer.types import AnswerResult
from voxturn.audio.playback import PlaybackEngine
from voxturn.errors import AnswerUnavailable, CapabilityUnavailable, PlaybackFailed
from voxturn.orchestrator.clock import ManualClock
from voxturn.orchestrator.events import HistoryEntry
from voxturn.orchestrator.policies import TurnPolicies, default_policies
from voxturn.orchestrator.state_machine import TurnController
from voxturn.recognition.base import RecognitionEngine, RecognitionListener


async def settle(rounds: int = 5) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeEngine(RecognitionEngine):
    def __init__(self, lang: str, start_error: Exception | None = None) -> None:
        self.lang = lang
        self.start_error = start_error
        self.listener: RecognitionListener | None = None
        self.stopped = False

    def start(self, listener: RecognitionListener) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.listener = listener

    def stop(self) -> None:
        self.stopped = True

    def speech_start(self) -> None:
        assert self.listener is not None
        self.listener.on_speech_start()

    def result(self, index: int, text: str, is_final: bool = False) -> None:
        assert self.listener is not None
        self.listener.on_result(index, text, is_final)

    def error(self, code: str, detail: str | None = None) -> None:
        assert self.listener is not None
        self.listener.on_error(code, detail)

    def end(self) -> None:
        assert self.listener is not None
        self.listener.on_end()


class EngineFactory:
    def __init__(self, available: bool = True) -> None:
        self.available = available
        self.start_error: Exception | None = None
        self.engines: list[FakeEngine] = []
        self.calls = 0

    def __call__(self, lang: str) -> FakeEngine:
        self.calls += 1
        if not self.available:
            raise CapabilityUnavailable("speech recognition not supported")
        engine = FakeEngine(lang, start_error=self.start_error)
        self.engines.append(engine)
        return engine

    @property
    def current(self) -> FakeEngine:
        return self.engines[-1]


class FakeAnswerService:
    """Each call parks on a future until the test resolves it."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, list[HistoryEntry]]] = []
        self._pending: list[asyncio.Future[AnswerResult]] = []

    async def answer(self, utterance: str, history: Sequence[HistoryEntry]) -> AnswerResult:
        self.calls.append((utterance, list(history)))
        future: asyncio.Future[AnswerResult] = asyncio.get_running_loop().create_future()
        self._pending.append(future)
        return await future

    def reply(self, text: str) -> None:
        self._pending.pop(0).set_result(AnswerResult(text=text))

    def fail(self, fallback: str = "No se pudo obtener respuesta de la IA.") -> None:
        self._pending.pop(0).set_result(AnswerResult.failed(AnswerUnavailable("boom", fallback)))


class FakeSynthesizer:
    def __init__(self) -> None:
        self.requests: list[tuple[str, str, str]] = []
        self.fail_with: str | None = None

    async def synthesize(self, text: str, voice: str, lang: str) -> bytes:
        self.requests.append((text, voice, lang))
        if self.fail_with is not None:
            raise PlaybackFailed(self.fail_with)
        return b"RIFF-fake-audio"


class FakeResource:
    def __init__(self) -> None:
        self.on_ended: Callable[[], None] | None = None
        self.on_error: Callable[[str], None] | None = None
        self.playback_rate = 1.0
        self.muted = False
        self.current_time = 0.0
        self._playing = False
        self.closed = False
        self.paused = False
        self.play_error: Exception | None = None

    @property
    def playing(self) -> bool:
        return self._playing

    def play(self) -> None:
        if self.play_error is not None:
            raise self.play_error
        self._playing = True
        self.current_time = 0.4

    def pause(self) -> None:
        self._playing = False
        self.paused = True

    def close(self) -> None:
        self._playing = False
        self.closed = True

    def finish(self) -> None:
        self._playing = False
        assert self.on_ended is not None
        self.on_ended()

    def crash(self, reason: str = "device lost") -> None:
        self._playing = False
        assert self.on_error is not None
        self.on_error(reason)


class FakeOutput:
    def __init__(self) -> None:
        self.resources: list[FakeResource] = []
        self.play_error: Exception | None = None

    def create_resource(self, audio: bytes) -> FakeResource:
        resource = FakeResource()
        resource.play_error = self.play_error
        self.resources.append(resource)
        return resource

    @property
    def current(self) -> FakeResource:
        return self.resources[-1]


class Harness:
    def __init__(self, policies: TurnPolicies | None = None, recognition_available: bool = True) -> None:
        self.clock = ManualClock()
        self.engines = EngineFactory(available=recognition_available)
        self.answers = FakeAnswerService()
        self.synth = FakeSynthesizer()
        self.output = FakeOutput()
        self.playback = PlaybackEngine(self.synth, self.output, voice="es-ES-AlvaroNeural", lang="es-ES")
        self.controller = TurnController(
            answer_service=self.answers,
            playback=self.playback,
            engine_factory=self.engines,
            policies=policies or default_policies(),
            clock=self.clock,
        )
        self.result_index = 0

    @property
    def engine(self) -> FakeEngine:
        return self.engines.current

    def say(self, text: str, final: bool = False) -> None:
        """Deliver a result for the current recognition result slot."""
        self.engine.result(self.result_index, text, is_final=final)

    async def utter(self, text: str) -> None:
        """Speak ``text`` in a fresh result slot and let the silence window elapse."""
        self.result_index += 1
        self.engine.speech_start()
        self.say(text)
        self.clock.advance(1.5)
        await settle()

    async def reply_and_speak(self, text: str) -> FakeResource:
        self.answers.reply(text)
        await settle()
        return self.output.current
