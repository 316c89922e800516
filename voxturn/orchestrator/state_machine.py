from __future__ import annotations

import asyncio
from collections import deque
from typing import Callable, Protocol, Sequence

from voxturn.answer.types import AnswerResult
from voxturn.audio.playback import PlaybackEngine
from voxturn.errors import CapabilityUnavailable, RecognitionTransientError
from voxturn.orchestrator.clock import CLOCK, Clock, TimerHandle
from voxturn.orchestrator.endpointer import UtteranceEndpointer
from voxturn.orchestrator.events import (
    BargeIn,
    ControllerEvent,
    ConversationMessage,
    GraceElapsed,
    HistoryEntry,
    InterimTranscript,
    MicToggled,
    PlaybackEnded,
    PlaybackStarted,
    RecognitionEnded,
    RecognitionFailed,
    ReplyArrived,
    ReplyFailed,
    Role,
    SpeechStarted,
    TurnState,
    UISnapshot,
    UtteranceCommitted,
    UtteranceDiscarded,
)
from voxturn.orchestrator.policies import TurnPolicies, default_policies
from voxturn.recognition.adapter import RecognitionStreamAdapter
from voxturn.recognition.base import EngineFactory
from voxturn.telemetry.logging import get_logger, turn_context
from voxturn.tts.voices import VoiceCatalogue

RECOGNITION_UNAVAILABLE_TEXT = "Este dispositivo no soporta reconocimiento de voz."
CONNECTION_ERROR_TEXT = "Error de conexión con el backend."


class AnswerService(Protocol):
    async def answer(self, utterance: str, history: Sequence[HistoryEntry]) -> AnswerResult: ...


SnapshotListener = Callable[[UISnapshot], None]


class TurnController:
    """Turn-taking state machine for one conversation session.

    Recognizer, endpointer, answer and playback callbacks never touch state
    directly: they ``post`` events to a mailbox drained by a single dispatcher.
    An event posted while another is being handled (a nested callback) waits
    until the current handler returns, so handlers never interleave.
    """

    def __init__(
        self,
        answer_service: AnswerService,
        playback: PlaybackEngine,
        engine_factory: EngineFactory,
        lang: str = "es-ES",
        policies: TurnPolicies | None = None,
        catalogue: VoiceCatalogue | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._answer = answer_service
        self._playback = playback
        self._policies = policies or default_policies()
        self._catalogue = catalogue
        self._clock = clock or CLOCK
        self._logger = get_logger(__name__)

        self._state = TurnState.IDLE
        self._messages: list[ConversationMessage] = []
        self._history: list[HistoryEntry] = []
        self._mailbox: deque[ControllerEvent] = deque()
        self._dispatching = False
        self._disposed = False
        self._turn_counter = 0
        self._inflight: asyncio.Task[None] | None = None
        self._inflight_turn: int | None = None
        self._grace: TimerHandle | None = None
        self._capability_lost = False
        self._listeners: list[SnapshotListener] = []
        self._handlers: dict[type, Callable[[ControllerEvent], None]] = {
            MicToggled: self._on_mic_toggled,
            SpeechStarted: self._on_speech_started,
            InterimTranscript: self._on_interim,
            RecognitionEnded: self._on_recognition_ended,
            RecognitionFailed: self._on_recognition_failed,
            BargeIn: self._on_barge_in,
            UtteranceCommitted: self._on_committed,
            UtteranceDiscarded: self._on_discarded,
            ReplyArrived: self._on_reply,
            ReplyFailed: self._on_reply_failed,
            PlaybackStarted: self._on_playback_started,
            PlaybackEnded: self._on_playback_ended,
            GraceElapsed: self._on_grace_elapsed,
        }

        self._endpointer = UtteranceEndpointer(
            policy=self._policies.endpoint,
            is_vocalizing=lambda: self._playback.is_vocalizing,
            on_barge_in=lambda: self.post(BargeIn()),
            on_committed=lambda text: self.post(UtteranceCommitted(text, from_voice=True)),
            on_discarded=lambda text: self.post(UtteranceDiscarded(text)),
            clock=self._clock,
        )
        self._recognition = RecognitionStreamAdapter(
            engine_factory=engine_factory,
            lang=lang,
            on_speech_start=lambda: self.post(SpeechStarted()),
            on_interim_result=lambda text: self.post(InterimTranscript(text)),
            on_recognition_ended=lambda: self.post(RecognitionEnded()),
            on_recognition_error=self._post_recognition_error,
        )
        self._playback.on_started = lambda: self.post(PlaybackStarted())
        self._playback.on_ended = lambda: self.post(PlaybackEnded())
        self._playback.on_error = lambda reason: self.post(PlaybackEnded(error=reason))

    # ------------------------------------------------------------------
    # Derived, read-only view for the presentation layer

    @property
    def state(self) -> TurnState:
        return self._state

    @property
    def is_processing(self) -> bool:
        return self._state in (TurnState.COMMITTING, TurnState.AWAITING_REPLY) or self._grace is not None

    @property
    def is_speaking(self) -> bool:
        return self._state is TurnState.SPEAKING

    @property
    def mic_active(self) -> bool:
        return self._recognition.should_keep_listening

    @property
    def is_muted(self) -> bool:
        return self._playback.muted

    @property
    def input_buffer(self) -> str:
        return self._endpointer.buffer

    @property
    def messages(self) -> tuple[ConversationMessage, ...]:
        return tuple(self._messages)

    @property
    def history(self) -> tuple[HistoryEntry, ...]:
        return tuple(self._history)

    @property
    def recognition(self) -> RecognitionStreamAdapter:
        return self._recognition

    @property
    def voice(self) -> str:
        return self._playback.voice

    @property
    def lang(self) -> str:
        return self._recognition.lang

    def snapshot(self) -> UISnapshot:
        return UISnapshot(
            state=self._state,
            is_processing=self.is_processing,
            is_speaking=self.is_speaking,
            mic_active=self.mic_active,
            is_muted=self.is_muted,
            input_buffer=self.input_buffer,
            voice=self.voice,
            lang=self.lang,
            messages=list(self._messages),
        )

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Actions

    def toggle_mic(self) -> bool:
        self.set_mic(not self.mic_active)
        return self.mic_active

    def set_mic(self, enabled: bool) -> None:
        self.post(MicToggled(enabled))

    def toggle_mute(self) -> bool:
        self.set_muted(not self.is_muted)
        return self.is_muted

    def set_muted(self, muted: bool) -> None:
        self._playback.set_muted(muted)
        self._publish()

    def send_text(self, text: str) -> bool:
        """Submit typed input. Rejected while another reply is outstanding."""
        text = text.strip()
        if not text:
            return False
        if self._inflight is not None:
            self._logger.warning("turn.send_text.rejected", reason="reply_in_flight")
            return False
        self.post(UtteranceCommitted(text, from_voice=False))
        return True

    def clear_history(self) -> None:
        self._messages.clear()
        self._history.clear()
        self._logger.info("turn.history.cleared")
        self._publish()

    def select_voice(self, name: str) -> None:
        if self._catalogue is not None:
            name = self._catalogue.get(name).name
        self._playback.voice = name
        self._logger.info("turn.voice.selected", voice=name)
        self._publish()

    def select_lang(self, lang: str) -> None:
        if self._catalogue is not None:
            self._playback.voice = self._catalogue.default_for(lang).name
        self._playback.lang = lang
        try:
            self._recognition.set_lang(lang)
        except CapabilityUnavailable as exc:
            self._lose_capability(exc)
        except RecognitionTransientError as exc:
            self._recognition_stopped(exc)
        self._logger.info("turn.lang.selected", lang=lang, voice=self._playback.voice)
        self._publish()

    def greet(self) -> bool:
        """Append and speak the configured welcome message, if any."""
        text = self._policies.welcome_message
        if not text or self._messages:
            return False
        self._messages.append(ConversationMessage(role="assistant", text=text, from_voice=True))
        self._playback.speak(text)
        if self._state in (TurnState.IDLE, TurnState.LISTENING):
            self._transition(TurnState.SPEAKING, reason="greeting")
        self._publish()
        return True

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._recognition.stop()
        self._endpointer.reset()
        self._playback.dispose()
        self._cancel_grace()
        if self._inflight is not None:
            self._inflight.cancel()
            self._inflight = None
        self._mailbox.clear()
        self._listeners.clear()
        self._state = TurnState.IDLE
        self._logger.info("turn.controller.disposed")

    # ------------------------------------------------------------------
    # Mailbox

    def post(self, event: ControllerEvent) -> None:
        if self._disposed:
            return
        self._mailbox.append(event)
        if self._dispatching:
            return
        self._dispatching = True
        try:
            while self._mailbox:
                current = self._mailbox.popleft()
                self._handlers[type(current)](current)
        finally:
            self._dispatching = False
        self._publish()

    def _post_recognition_error(self, error: RecognitionTransientError) -> None:
        self.post(RecognitionFailed(error.code, error.detail))

    def _publish(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            listener(snapshot)

    # ------------------------------------------------------------------
    # Handlers

    def _on_mic_toggled(self, event: MicToggled) -> None:
        if event.enabled:
            if self._capability_lost:
                self._logger.warning("turn.mic.unavailable")
                return
            if self.mic_active:
                return
            try:
                self._recognition.start()
            except CapabilityUnavailable as exc:
                self._lose_capability(exc)
                return
            except RecognitionTransientError as exc:
                self._recognition_stopped(exc)
                return
            self._logger.info("turn.mic.on")
            if self._state is TurnState.IDLE:
                self._transition(TurnState.LISTENING, reason="mic_on")
            return

        self._recognition.stop()
        self._endpointer.reset()
        self._logger.info("turn.mic.off", state=self._state.value)
        # An outstanding reply or playback finishes on its own and then rests in IDLE.
        if self._state in (TurnState.LISTENING, TurnState.COMMITTING):
            self._transition(TurnState.IDLE, reason="mic_off")

    def _on_speech_started(self, event: SpeechStarted) -> None:
        if not self.mic_active:
            return
        self._endpointer.on_speech_start()
        if self._state is TurnState.LISTENING:
            self._cancel_grace()
            self._transition(TurnState.COMMITTING, reason="speech_start")

    def _on_interim(self, event: InterimTranscript) -> None:
        if not self.mic_active:
            return
        self._endpointer.on_interim_result(event.text)
        if self._state is TurnState.LISTENING:
            self._cancel_grace()
            self._transition(TurnState.COMMITTING, reason="interim")

    def _on_recognition_ended(self, event: RecognitionEnded) -> None:
        # A finished transcript is an endpoint; a partial one dies with the session.
        if self._recognition.transcript_final:
            self._endpointer.flush()
        else:
            self._endpointer.reset()
            if self._state is TurnState.COMMITTING:
                self._transition(self._resting_state(), reason="partial_transcript_dropped")
        if not self.mic_active and self._state in (TurnState.LISTENING, TurnState.COMMITTING):
            self._transition(TurnState.IDLE, reason="recognition_ended")

    def _on_recognition_failed(self, event: RecognitionFailed) -> None:
        if event.code == "capability-unavailable":
            self._lose_capability(CapabilityUnavailable(event.detail or event.code))
            return
        if self.mic_active:
            self._logger.info("turn.recognition.transient_error", code=event.code)
            return
        self._logger.info("turn.recognition.error_mic_off", code=event.code)
        self._endpointer.reset()
        if self._state in (TurnState.LISTENING, TurnState.COMMITTING):
            self._transition(TurnState.IDLE, reason="recognition_error")

    def _on_barge_in(self, event: BargeIn) -> None:
        interrupted = self._playback.stop_immediately()
        self._cancel_grace()
        self._logger.info("turn.barge_in", state=self._state.value, interrupted=interrupted)
        if self._state is TurnState.SPEAKING:
            self._transition(TurnState.COMMITTING if self.mic_active else TurnState.IDLE, reason="barge_in")

    def _on_committed(self, event: UtteranceCommitted) -> None:
        if event.from_voice:
            self._recognition.reset_transcript()
        if self._inflight is not None:
            self._logger.warning(
                "turn.commit.dropped",
                text=event.text,
                from_voice=event.from_voice,
                inflight_turn=self._inflight_turn,
            )
            return
        if self._playback.busy:
            self._playback.stop_immediately()
        self._cancel_grace()

        self._append("user", event.text, event.from_voice)
        history = list(self._history[:-1])
        self._turn_counter += 1
        turn_id = self._turn_counter
        self._inflight_turn = turn_id
        self._transition(TurnState.AWAITING_REPLY, reason="commit", turn_id=turn_id)
        self._inflight = asyncio.create_task(self._request(turn_id, event.text, history, event.from_voice))

    def _on_discarded(self, event: UtteranceDiscarded) -> None:
        self._recognition.reset_transcript()
        if self._state is TurnState.COMMITTING:
            self._transition(self._resting_state(), reason="discarded")

    def _on_reply(self, event: ReplyArrived) -> None:
        self._finish_request(event.turn_id)
        self._append("assistant", event.text, event.from_voice)
        if event.from_voice:
            self._speak(event.text)
        elif self._state is TurnState.AWAITING_REPLY:
            self._transition(self._resting_state(), reason="reply_text_only", turn_id=event.turn_id)

    def _on_reply_failed(self, event: ReplyFailed) -> None:
        self._finish_request(event.turn_id)
        self._logger.warning("turn.reply.failed", turn_id=event.turn_id, reason=event.reason)
        self._append("assistant", event.fallback_text, event.from_voice)
        if event.from_voice and self._policies.speak_fallback:
            self._speak(event.fallback_text)
        elif self._state is TurnState.AWAITING_REPLY:
            self._transition(self._resting_state(), reason="reply_failed", turn_id=event.turn_id)

    def _on_playback_started(self, event: PlaybackStarted) -> None:
        self._logger.debug("turn.playback.started", state=self._state.value)

    def _on_playback_ended(self, event: PlaybackEnded) -> None:
        if event.error is not None:
            self._logger.warning("turn.playback.failed", error=event.error)
        if self._state is not TurnState.SPEAKING:
            return
        self._transition(self._resting_state(), reason="playback_error" if event.error else "playback_ended")
        self._start_grace()

    def _on_grace_elapsed(self, event: GraceElapsed) -> None:
        self._grace = None

    # ------------------------------------------------------------------
    # Helpers

    async def _request(self, turn_id: int, text: str, history: list[HistoryEntry], from_voice: bool) -> None:
        with turn_context(turn_id, from_voice):
            try:
                result = await self._answer.answer(text, history)
            except Exception as exc:  # pragma: no cover
                self._logger.error("turn.request.crashed", error=str(exc))
                self.post(ReplyFailed(turn_id, str(exc), CONNECTION_ERROR_TEXT, from_voice))
                return
        if result.error is None:
            self.post(ReplyArrived(turn_id, result.text, from_voice))
        else:
            self.post(ReplyFailed(turn_id, result.error.reason, result.text, from_voice))

    def _finish_request(self, turn_id: int) -> None:
        if turn_id != self._inflight_turn:
            self._logger.warning("turn.reply.unexpected", turn_id=turn_id, inflight_turn=self._inflight_turn)
        self._inflight = None
        self._inflight_turn = None

    def _speak(self, text: str) -> None:
        self._playback.speak(text)
        self._transition(TurnState.SPEAKING, reason="speak")

    def _append(self, role: Role, text: str, from_voice: bool) -> None:
        self._messages.append(ConversationMessage(role=role, text=text, from_voice=from_voice))
        self._history.append(HistoryEntry(role=role, content=text))

    def _resting_state(self) -> TurnState:
        return TurnState.LISTENING if self.mic_active else TurnState.IDLE

    def _transition(self, state: TurnState, reason: str, **context: object) -> None:
        if state is self._state:
            return
        self._logger.info("state.transition", previous=self._state.value, state=state.value, reason=reason, **context)
        self._state = state

    def _start_grace(self) -> None:
        self._cancel_grace()
        self._grace = self._clock.call_later(self._policies.grace_seconds, lambda: self.post(GraceElapsed()))

    def _cancel_grace(self) -> None:
        if self._grace is not None:
            self._grace.cancel()
            self._grace = None

    def _recognition_stopped(self, exc: RecognitionTransientError) -> None:
        self._logger.warning("turn.recognition.start_failed", code=exc.code, detail=exc.detail)
        self._endpointer.reset()
        if self._state in (TurnState.LISTENING, TurnState.COMMITTING):
            self._transition(TurnState.IDLE, reason="recognition_start_failed")

    def _lose_capability(self, exc: CapabilityUnavailable) -> None:
        self._recognition.stop()
        self._endpointer.reset()
        if self._state in (TurnState.LISTENING, TurnState.COMMITTING):
            self._transition(TurnState.IDLE, reason="capability_unavailable")
        if self._capability_lost:
            return
        self._capability_lost = True
        self._logger.error("turn.recognition.unavailable", error=str(exc))
        self._messages.append(ConversationMessage(role="assistant", text=RECOGNITION_UNAVAILABLE_TEXT))


__all__ = ["TurnController", "AnswerService", "RECOGNITION_UNAVAILABLE_TEXT"]
