from __future__ import annotations

import functools
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from voxturn.config import package_root


@dataclass(frozen=True, slots=True)
class VoiceOption:
    name: str
    label: str
    lang: str

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "label": self.label, "lang": self.lang}


class VoiceCatalogue:
    def __init__(self, raw_config: dict[str, Any]) -> None:
        voices = raw_config.get("voices") or []
        if not voices:
            raise ValueError("Voice catalogue defines no voices")
        self._voices = [
            VoiceOption(name=str(v["name"]), label=str(v.get("label", v["name"])), lang=str(v["lang"]))
            for v in voices
        ]
        self._by_name = {voice.name: voice for voice in self._voices}

    def voices(self) -> list[VoiceOption]:
        return list(self._voices)

    def languages(self) -> list[str]:
        return list(dict.fromkeys(voice.lang for voice in self._voices))

    def voices_for(self, lang: str) -> list[VoiceOption]:
        return [voice for voice in self._voices if voice.lang == lang]

    def get(self, name: str) -> VoiceOption:
        try:
            return self._by_name[name]
        except KeyError:
            raise ValueError(f"Unknown voice '{name}'") from None

    def default_for(self, lang: str) -> VoiceOption:
        voices = self.voices_for(lang)
        if not voices:
            raise ValueError(f"No voices configured for language '{lang}'")
        return voices[0]


def load_catalogue_file(path: Path) -> VoiceCatalogue:
    if not path.exists():
        raise FileNotFoundError(path)
    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError(f"{path.name} must define a mapping")
    return VoiceCatalogue(raw)


@functools.lru_cache(maxsize=1)
def load_catalogue() -> VoiceCatalogue:
    return load_catalogue_file(package_root() / "tts" / "voices.yml")


__all__ = ["VoiceOption", "VoiceCatalogue", "load_catalogue", "load_catalogue_file"]
