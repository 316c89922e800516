from __future__ import annotations

from typing import Callable

from voxturn.errors import CapabilityUnavailable, RecognitionTransientError
from voxturn.recognition.base import EngineFactory, RecognitionEngine, RecognitionListener
from voxturn.telemetry.logging import get_logger


class RecognitionStreamAdapter:
    """Keeps a continuous recognizer alive while the mic session is on.

    Engines end on their own all the time with continuous recognition, so an
    unexpected end while ``should_keep_listening`` is set triggers exactly one
    restart, with no cap on how many times that happens over a session.
    """

    def __init__(
        self,
        engine_factory: EngineFactory,
        lang: str,
        on_speech_start: Callable[[], None],
        on_interim_result: Callable[[str], None],
        on_recognition_ended: Callable[[], None],
        on_recognition_error: Callable[[RecognitionTransientError], None],
    ) -> None:
        self._engine_factory = engine_factory
        self._lang = lang
        self._on_speech_start = on_speech_start
        self._on_interim_result = on_interim_result
        self._on_recognition_ended = on_recognition_ended
        self._on_recognition_error = on_recognition_error
        self._engine: RecognitionEngine | None = None
        self._generation = 0
        self._results: dict[int, str] = {}
        self._final: set[int] = set()
        self._base_index = 0
        self.should_keep_listening = False
        self.restarts = 0
        self._logger = get_logger(__name__)

    @property
    def lang(self) -> str:
        return self._lang

    @property
    def running(self) -> bool:
        return self._engine is not None

    @property
    def transcript_final(self) -> bool:
        """True when every result of the current attempt has been marked final."""
        return bool(self._results) and self._final.issuperset(self._results)

    def start(self) -> None:
        if self._engine is not None:
            return
        self.should_keep_listening = True
        try:
            self._launch()
        except (CapabilityUnavailable, RecognitionTransientError):
            self.should_keep_listening = False
            raise

    def stop(self) -> None:
        self.should_keep_listening = False
        self._release()

    def set_lang(self, lang: str) -> None:
        if lang == self._lang:
            return
        self._lang = lang
        if self._engine is not None:
            self._logger.info("recognition.lang.switch", lang=lang)
            self._release()
            try:
                self._launch()
            except (CapabilityUnavailable, RecognitionTransientError):
                self.should_keep_listening = False
                raise

    def reset_transcript(self) -> None:
        """Start a new utterance attempt; earlier results drop out of the transcript."""
        if self._results:
            self._base_index = max(self._results) + 1
        self._results = {}
        self._final = set()

    def _launch(self) -> None:
        engine = self._engine_factory(self._lang)
        self._generation += 1
        generation = self._generation
        self._results = {}
        self._final = set()
        self._base_index = 0
        self._engine = engine
        listener = RecognitionListener(
            on_speech_start=lambda: self._handle_speech_start(generation),
            on_result=lambda index, text, is_final: self._handle_result(generation, index, text, is_final),
            on_error=lambda code, detail: self._handle_error(generation, code, detail),
            on_end=lambda: self._handle_end(generation),
        )
        try:
            engine.start(listener)
        except (CapabilityUnavailable, RecognitionTransientError):
            self._engine = None
            raise
        except Exception as exc:
            self._engine = None
            raise RecognitionTransientError("start-failed", f"{type(exc).__name__}: {exc}") from exc
        self._logger.info("recognition.started", lang=self._lang, generation=generation)

    def _release(self) -> None:
        engine = self._engine
        self._engine = None
        # Bumping the generation silences any event the old engine still delivers.
        self._generation += 1
        self._results = {}
        self._final = set()
        if engine is not None:
            engine.stop()
            self._logger.info("recognition.stopped")

    def _current(self, generation: int) -> bool:
        return generation == self._generation and self._engine is not None

    def _handle_speech_start(self, generation: int) -> None:
        if self._current(generation):
            self._on_speech_start()

    def _handle_result(self, generation: int, index: int, text: str, is_final: bool) -> None:
        if not self._current(generation) or index < self._base_index:
            return
        self._results[index] = text.strip()
        if is_final:
            self._final.add(index)
        else:
            self._final.discard(index)
        transcript = " ".join(part for _, part in sorted(self._results.items()) if part)
        self._logger.debug("recognition.result", index=index, is_final=is_final, text=transcript)
        if transcript:
            self._on_interim_result(transcript)

    def _handle_error(self, generation: int, code: str, detail: str | None) -> None:
        if not self._current(generation):
            return
        self._logger.warning("recognition.error", code=code, detail=detail)
        self._on_recognition_error(RecognitionTransientError(code, detail))

    def _handle_end(self, generation: int) -> None:
        if not self._current(generation):
            return
        self._engine = None
        self._on_recognition_ended()
        if not self.should_keep_listening:
            return
        self.restarts += 1
        self._logger.info("recognition.restart", attempt=self.restarts)
        try:
            self._launch()
        except CapabilityUnavailable as exc:
            self.should_keep_listening = False
            self._on_recognition_error(RecognitionTransientError("capability-unavailable", str(exc)))
        except RecognitionTransientError as exc:
            self.should_keep_listening = False
            self._logger.warning("recognition.restart.failed", code=exc.code, detail=exc.detail)
            self._on_recognition_error(exc)


__all__ = ["RecognitionStreamAdapter"]
