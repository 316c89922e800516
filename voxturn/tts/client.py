from __future__ import annotations

import httpx

from voxturn.config import BackendSettings
from voxturn.errors import PlaybackFailed
from voxturn.telemetry.logging import get_logger
from voxturn.telemetry.tracing import annotate, get_tracer


class SpeechSynthesisClient:
    """Fetches synthesized speech from ``POST /tts``."""

    def __init__(self, settings: BackendSettings, client: httpx.AsyncClient | None = None) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=settings.base_url.rstrip("/"),
            timeout=httpx.Timeout(settings.timeout_s),
        )
        self._logger = get_logger(__name__)
        self._tracer = get_tracer(__name__)

    async def synthesize(self, text: str, voice: str, lang: str) -> bytes:
        payload = {"text": text, "voice": voice, "lang": lang}
        log_text = text if len(text) <= 120 else text[:120] + "…"
        self._logger.info("tts.request", voice=voice, lang=lang, text=log_text)
        with self._tracer.start_as_current_span("tts.request") as span:
            annotate(span, voice=voice, lang=lang, text_chars=len(text))
            try:
                async with self._client.stream("POST", "/tts", json=payload) as resp:
                    resp.raise_for_status()
                    content_type = resp.headers.get("content-type", "")
                    if not content_type.startswith("audio/"):
                        raise PlaybackFailed(f"unexpected content-type '{content_type}'")
                    audio_chunks: list[bytes] = []
                    async for chunk in resp.aiter_bytes():
                        audio_chunks.append(chunk)
            except httpx.HTTPError as exc:
                raise PlaybackFailed(f"tts request failed: {exc}") from exc
        audio = b"".join(audio_chunks)
        if not audio:
            raise PlaybackFailed("tts returned empty audio")
        return audio

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = ["SpeechSynthesisClient"]
