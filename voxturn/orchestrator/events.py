from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

Role = Literal["user", "assistant"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TurnState(str, Enum):
    IDLE = "IDLE"
    LISTENING = "LISTENING"
    COMMITTING = "COMMITTING"
    AWAITING_REPLY = "AWAITING_REPLY"
    SPEAKING = "SPEAKING"


@dataclass(frozen=True, slots=True)
class ConversationMessage:
    role: Role
    text: str
    from_voice: bool = False
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "text": self.text,
            "from_voice": self.from_voice,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    role: Role
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(slots=True)
class UISnapshot:
    state: TurnState
    is_processing: bool
    is_speaking: bool
    mic_active: bool
    is_muted: bool
    input_buffer: str
    voice: str
    lang: str
    messages: list[ConversationMessage]

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "is_processing": self.is_processing,
            "is_speaking": self.is_speaking,
            "mic_active": self.mic_active,
            "is_muted": self.is_muted,
            "input_buffer": self.input_buffer,
            "voice": self.voice,
            "lang": self.lang,
            "messages": [message.to_dict() for message in self.messages],
        }


# Mailbox events consumed by the turn controller.


@dataclass(frozen=True, slots=True)
class SpeechStarted:
    pass


@dataclass(frozen=True, slots=True)
class InterimTranscript:
    text: str


@dataclass(frozen=True, slots=True)
class RecognitionEnded:
    pass


@dataclass(frozen=True, slots=True)
class RecognitionFailed:
    code: str
    detail: str | None = None


@dataclass(frozen=True, slots=True)
class BargeIn:
    pass


@dataclass(frozen=True, slots=True)
class UtteranceCommitted:
    text: str
    from_voice: bool = True


@dataclass(frozen=True, slots=True)
class UtteranceDiscarded:
    text: str


@dataclass(frozen=True, slots=True)
class ReplyArrived:
    turn_id: int
    text: str
    from_voice: bool


@dataclass(frozen=True, slots=True)
class ReplyFailed:
    turn_id: int
    reason: str
    fallback_text: str
    from_voice: bool


@dataclass(frozen=True, slots=True)
class PlaybackStarted:
    pass


@dataclass(frozen=True, slots=True)
class PlaybackEnded:
    error: str | None = None


@dataclass(frozen=True, slots=True)
class GraceElapsed:
    pass


@dataclass(frozen=True, slots=True)
class MicToggled:
    enabled: bool


ControllerEvent = (
    SpeechStarted
    | InterimTranscript
    | RecognitionEnded
    | RecognitionFailed
    | BargeIn
    | UtteranceCommitted
    | UtteranceDiscarded
    | ReplyArrived
    | ReplyFailed
    | PlaybackStarted
    | PlaybackEnded
    | GraceElapsed
    | MicToggled
)


__all__ = [
    "Role",
    "TurnState",
    "ConversationMessage",
    "HistoryEntry",
    "UISnapshot",
    "SpeechStarted",
    "InterimTranscript",
    "RecognitionEnded",
    "RecognitionFailed",
    "BargeIn",
    "UtteranceCommitted",
    "UtteranceDiscarded",
    "ReplyArrived",
    "ReplyFailed",
    "PlaybackStarted",
    "PlaybackEnded",
    "GraceElapsed",
    "MicToggled",
    "ControllerEvent",
]
