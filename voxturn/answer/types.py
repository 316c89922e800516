from __future__ import annotations

from dataclasses import dataclass, field
from json import dumps
from typing import Any, Sequence

from voxturn.errors import AnswerUnavailable
from voxturn.orchestrator.events import HistoryEntry


@dataclass(slots=True)
class AnswerResult:
    text: str
    error: AnswerUnavailable | None = None
    raw_text: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failed(cls, error: AnswerUnavailable) -> "AnswerResult":
        return cls(text=error.fallback_text, error=error)


@dataclass(slots=True)
class AnswerRequest:
    persona: str
    utterance: str
    context: dict[str, Any]
    history: Sequence[HistoryEntry] = field(default_factory=list)

    def compose_prompt(self) -> str:
        context_block = dumps(self.context, ensure_ascii=False, indent=2) if self.context else "None"
        return (
            f"{self.persona}\n\n"
            f"<CONTEXT>\n{context_block}\n</CONTEXT>\n\n"
            f"<USER_PROMPT>\n{self.utterance}\n</USER_PROMPT>"
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "text": self.compose_prompt(),
            "history": [entry.to_dict() for entry in self.history],
        }


__all__ = ["AnswerResult", "AnswerRequest"]
