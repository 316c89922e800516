from __future__ import annotations

import functools
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BackendSettings(BaseModel):
    base_url: str
    context_categories: list[str] = Field(default_factory=list)
    timeout_s: float | None = None
    persona_prompt: str | None = None
    fallback_text: str = "No se pudo obtener respuesta de la IA."


class RecognitionSettings(BaseModel):
    base_url: str
    auth_token: str | None = None
    lang: str = "es-ES"
    sample_rate: int = 16_000
    frame_ms: int = 30
    input_device: str | int | None = None


class PlaybackSettings(BaseModel):
    voice: str
    lang: str = "es-ES"
    rate: float = 0.85
    output_device: str | int | None = None
    voices_path: Path | None = None


class TurnSettings(BaseModel):
    debounce_seconds: float = 1.5
    min_commit_chars: int = 10
    grace_seconds: float = 1.0
    speak_fallback: bool = True
    welcome_message: str | None = None


class TelemetrySettings(BaseModel):
    log_level: str = "INFO"
    otlp_endpoint: str | None = None


class UISettings(BaseModel):
    floating_ui_origin: str = "http://localhost:5173"
    host: str = "127.0.0.1"
    port: int = 8010


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=(".env", ".env.local"), env_file_encoding="utf-8", extra="ignore")

    BACKEND_URL: str = "http://localhost:8000/api"
    CONTEXT_CATEGORIES: list[str] = Field(default_factory=list)
    REQUEST_TIMEOUT_S: float | None = None
    PERSONA_PROMPT: str | None = None
    FALLBACK_TEXT: str = "No se pudo obtener respuesta de la IA."
    REALTIME_STT_URL: str = "ws://localhost:8765"
    REALTIME_STT_AUTH_TOKEN: str | None = None
    RECOGNITION_LANG: str = "es-ES"
    AUDIO_SAMPLE_RATE: int = 16_000
    AUDIO_FRAME_MS: int = 30
    AUDIO_INPUT_DEVICE: str | int | None = None
    AUDIO_OUTPUT_DEVICE: str | int | None = None
    TTS_VOICE: str = "es-ES-AlvaroNeural"
    PLAYBACK_RATE: float = 0.85
    VOICES_PATH: Path | None = None
    DEBOUNCE_SECONDS: float = 1.5
    MIN_COMMIT_CHARS: int = 10
    GRACE_SECONDS: float = 1.0
    SPEAK_FALLBACK: bool = True
    WELCOME_MESSAGE: str | None = None
    LOG_LEVEL: str = "INFO"
    OTEL_EXPORTER_OTLP_ENDPOINT: str | None = None
    FLOATING_UI_ORIGIN: str = "http://localhost:5173"
    SERVER_HOST: str = "127.0.0.1"
    SERVER_PORT: int = 8010

    @staticmethod
    def _coerce_device(device: str | int | None) -> str | int | None:
        if isinstance(device, str):
            trimmed = device.strip()
            if not trimmed:
                return None
            if trimmed.isdigit():
                return int(trimmed)
            return trimmed
        return device

    @property
    def backend(self) -> BackendSettings:
        return BackendSettings(
            base_url=self.BACKEND_URL,
            context_categories=self.CONTEXT_CATEGORIES,
            timeout_s=self.REQUEST_TIMEOUT_S,
            persona_prompt=self.PERSONA_PROMPT,
            fallback_text=self.FALLBACK_TEXT,
        )

    @property
    def recognition(self) -> RecognitionSettings:
        return RecognitionSettings(
            base_url=self.REALTIME_STT_URL,
            auth_token=self.REALTIME_STT_AUTH_TOKEN,
            lang=self.RECOGNITION_LANG,
            sample_rate=self.AUDIO_SAMPLE_RATE,
            frame_ms=self.AUDIO_FRAME_MS,
            input_device=self._coerce_device(self.AUDIO_INPUT_DEVICE),
        )

    @property
    def playback(self) -> PlaybackSettings:
        return PlaybackSettings(
            voice=self.TTS_VOICE,
            lang=self.RECOGNITION_LANG,
            rate=self.PLAYBACK_RATE,
            output_device=self._coerce_device(self.AUDIO_OUTPUT_DEVICE),
            voices_path=self.VOICES_PATH,
        )

    @property
    def turn(self) -> TurnSettings:
        return TurnSettings(
            debounce_seconds=self.DEBOUNCE_SECONDS,
            min_commit_chars=self.MIN_COMMIT_CHARS,
            grace_seconds=self.GRACE_SECONDS,
            speak_fallback=self.SPEAK_FALLBACK,
            welcome_message=self.WELCOME_MESSAGE,
        )

    @property
    def telemetry(self) -> TelemetrySettings:
        return TelemetrySettings(log_level=self.LOG_LEVEL, otlp_endpoint=self.OTEL_EXPORTER_OTLP_ENDPOINT)

    @property
    def ui(self) -> UISettings:
        return UISettings(floating_ui_origin=self.FLOATING_UI_ORIGIN, host=self.SERVER_HOST, port=self.SERVER_PORT)


@functools.lru_cache(maxsize=1)
def load_settings() -> AppSettings:
    return AppSettings()


def package_root() -> Path:
    return Path(__file__).resolve().parent


__all__ = ["AppSettings", "load_settings", "package_root"]
