from __future__ import annotations


class VoxTurnError(Exception):
    """Base class for every failure raised inside voxturn."""


class CapabilityUnavailable(VoxTurnError):
    """The platform offers no recognition or playback capability. Terminal for the session."""


class RecognitionTransientError(VoxTurnError):
    def __init__(self, code: str, detail: str | None = None) -> None:
        super().__init__(f"{code}: {detail}" if detail else code)
        self.code = code
        self.detail = detail


class ContextFetchFailed(VoxTurnError):
    def __init__(self, category: str, reason: str) -> None:
        super().__init__(f"context '{category}' unavailable: {reason}")
        self.category = category
        self.reason = reason


class AnswerUnavailable(VoxTurnError):
    """The answer backend could not produce a reply.

    ``fallback_text`` is the plain-language message shown (and possibly spoken)
    in place of the reply.
    """

    def __init__(self, reason: str, fallback_text: str) -> None:
        super().__init__(reason)
        self.reason = reason
        self.fallback_text = fallback_text


class PlaybackFailed(VoxTurnError):
    """Audio retrieval or playback failed. Never retried automatically."""


__all__ = [
    "VoxTurnError",
    "CapabilityUnavailable",
    "RecognitionTransientError",
    "ContextFetchFailed",
    "AnswerUnavailable",
    "PlaybackFailed",
]
