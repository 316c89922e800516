from __future__ import annotations

from typing import Callable

from voxturn.orchestrator.clock import CLOCK, Clock, TimerHandle
from voxturn.orchestrator.policies import EndpointPolicy
from voxturn.telemetry.logging import get_logger


class UtteranceEndpointer:
    """Debounces interim transcripts into committed utterances.

    Every interim result restarts the silence timer. When the timer fires the
    buffered text is committed if it passes the policy filter, otherwise it is
    dropped as noise. If the agent is vocalizing when an interim result arrives,
    barge-in is signalled straight away rather than after the silence window.
    """

    def __init__(
        self,
        policy: EndpointPolicy,
        is_vocalizing: Callable[[], bool],
        on_barge_in: Callable[[], None],
        on_committed: Callable[[str], None],
        on_discarded: Callable[[str], None] | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._policy = policy
        self._is_vocalizing = is_vocalizing
        self._on_barge_in = on_barge_in
        self._on_committed = on_committed
        self._on_discarded = on_discarded
        self._clock = clock or CLOCK
        self._buffer = ""
        self._timer: TimerHandle | None = None
        self._logger = get_logger(__name__)

    @property
    def buffer(self) -> str:
        return self._buffer

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def on_speech_start(self) -> None:
        # The next interim result carries the full cumulative transcript again.
        # Speech that never yields a word lapses as noise after the silence window.
        self._buffer = ""
        self._restart_timer()

    def on_interim_result(self, text: str) -> None:
        if self._is_vocalizing():
            self._logger.info("endpointer.barge_in", text=text)
            self._on_barge_in()
        self._buffer = text
        self._restart_timer()

    def flush(self) -> None:
        """Evaluate any pending text now; used when the recognizer ends mid-utterance."""
        if self._timer is None:
            self._buffer = ""
            return
        self._cancel_timer()
        self._finalise()

    def reset(self) -> None:
        self._cancel_timer()
        self._buffer = ""

    def _on_silence(self) -> None:
        self._timer = None
        self._finalise()

    def _finalise(self) -> None:
        text = self._buffer.strip()
        self._buffer = ""
        if not self._policy.accepts(text):
            self._logger.debug("endpointer.discarded", text=text)
            if self._on_discarded is not None:
                self._on_discarded(text)
            return
        self._logger.info("endpointer.committed", text=text)
        self._on_committed(text)

    def _restart_timer(self) -> None:
        self._cancel_timer()
        self._timer = self._clock.call_later(self._policy.silence_seconds, self._on_silence)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


__all__ = ["UtteranceEndpointer"]
