from __future__ import annotations

from typing import Any

from voxturn.orchestrator.state_machine import TurnController

ACTIONS = ("toggleMic", "toggleMute", "sendText", "clearHistory", "selectVoice", "selectLang")


class UnknownAction(ValueError):
    pass


def apply_action(controller: TurnController, action: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
    """Run one presentation-layer action; returns a small result for the caller."""
    payload = payload or {}
    if action == "toggleMic":
        if "enabled" in payload:
            controller.set_mic(bool(payload["enabled"]))
        else:
            controller.toggle_mic()
        return {"mic_active": controller.mic_active}
    if action == "toggleMute":
        if "muted" in payload:
            controller.set_muted(bool(payload["muted"]))
        else:
            controller.toggle_mute()
        return {"is_muted": controller.is_muted}
    if action == "sendText":
        text = payload.get("text")
        if not isinstance(text, str):
            raise ValueError("sendText requires a 'text' string")
        return {"accepted": controller.send_text(text)}
    if action == "clearHistory":
        controller.clear_history()
        return {"cleared": True}
    if action == "selectVoice":
        controller.select_voice(str(payload.get("voice", "")))
        return {"voice": controller.voice}
    if action == "selectLang":
        controller.select_lang(str(payload.get("lang", "")))
        return {"lang": controller.lang, "voice": controller.voice}
    raise UnknownAction(f"Unknown action '{action}'")


__all__ = ["ACTIONS", "UnknownAction", "apply_action"]
