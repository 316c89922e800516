from __future__ import annotations

from dataclasses import dataclass

from voxturn.config import TurnSettings


@dataclass(slots=True)
class EndpointPolicy:
    silence_seconds: float = 1.5
    min_chars: int = 10
    min_tokens: int = 2

    def accepts(self, text: str) -> bool:
        """Commit only multi-word text or text longer than ``min_chars``."""
        stripped = text.strip()
        if not stripped:
            return False
        return len(stripped.split()) >= self.min_tokens or len(stripped) > self.min_chars


@dataclass(slots=True)
class TurnPolicies:
    endpoint: EndpointPolicy
    grace_seconds: float = 1.0
    speak_fallback: bool = True
    welcome_message: str | None = None

    @classmethod
    def from_settings(cls, settings: TurnSettings) -> "TurnPolicies":
        return cls(
            endpoint=EndpointPolicy(
                silence_seconds=settings.debounce_seconds,
                min_chars=settings.min_commit_chars,
            ),
            grace_seconds=settings.grace_seconds,
            speak_fallback=settings.speak_fallback,
            welcome_message=settings.welcome_message,
        )


def default_policies() -> TurnPolicies:
    return TurnPolicies(endpoint=EndpointPolicy())


__all__ = ["EndpointPolicy", "TurnPolicies", "default_policies"]
