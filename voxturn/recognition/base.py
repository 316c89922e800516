from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable


@dataclass(slots=True)
class RecognitionListener:
    """Callbacks a recognition engine delivers on the event loop thread."""

    on_speech_start: Callable[[], None]
    on_result: Callable[[int, str, bool], None]
    on_error: Callable[[str, str | None], None]
    on_end: Callable[[], None]


class RecognitionEngine(ABC):
    """Continuous, interim-result speech recognition for one locale.

    ``start`` returns immediately; results arrive through the listener until
    ``on_end`` fires, either because ``stop`` was called or because the
    underlying session closed on its own.
    """

    lang: str

    @abstractmethod
    def start(self, listener: RecognitionListener) -> None:
        """Begin recognizing. Raises ``CapabilityUnavailable`` if unsupported."""

    @abstractmethod
    def stop(self) -> None:
        """Stop recognizing and release the capture device."""


EngineFactory = Callable[[str], RecognitionEngine]


__all__ = ["RecognitionListener", "RecognitionEngine", "EngineFactory"]
