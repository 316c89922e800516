from __future__ import annotations

import asyncio
from typing import Any, Sequence

import httpx

from voxturn.answer.normalize import normalize_reply
from voxturn.answer.persona import resolve_persona
from voxturn.answer.types import AnswerRequest, AnswerResult
from voxturn.config import BackendSettings
from voxturn.errors import AnswerUnavailable, ContextFetchFailed
from voxturn.orchestrator.events import HistoryEntry
from voxturn.telemetry.logging import get_logger
from voxturn.telemetry.tracing import annotate, get_tracer

INFO_CATEGORY = "info"


class AnswerServiceClient:
    """Client for the answer backend (``GET /info``, ``GET /<category>``, ``POST /chat``).

    ``answer`` never raises: any transport, status or decoding failure comes
    back as an ``AnswerResult`` carrying an ``AnswerUnavailable`` and the fixed
    fallback text.
    """

    def __init__(self, settings: BackendSettings, client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._persona = resolve_persona(settings.persona_prompt)
        self._client = client or httpx.AsyncClient(
            base_url=settings.base_url.rstrip("/"),
            timeout=httpx.Timeout(settings.timeout_s),
        )
        self._logger = get_logger(__name__)
        self._tracer = get_tracer(__name__)

    @property
    def fallback_text(self) -> str:
        return self._settings.fallback_text

    async def fetch_context(self) -> dict[str, Any]:
        categories = [INFO_CATEGORY, *(c for c in self._settings.context_categories if c != INFO_CATEGORY)]
        results = await asyncio.gather(*(self._fetch_document(category) for category in categories), return_exceptions=True)
        context: dict[str, Any] = {}
        for category, result in zip(categories, results):
            if isinstance(result, ContextFetchFailed):
                self._logger.warning("answer.context.failed", category=category, reason=result.reason)
                continue
            if isinstance(result, BaseException):
                raise result
            context[category] = result
        return context

    async def _fetch_document(self, category: str) -> Any:
        try:
            resp = await self._client.get(f"/{category}")
            resp.raise_for_status()
            return resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise ContextFetchFailed(category, str(exc)) from exc

    async def answer(self, utterance: str, history: Sequence[HistoryEntry]) -> AnswerResult:
        with self._tracer.start_as_current_span("answer.request") as span:
            annotate(span, utterance_chars=len(utterance), history_len=len(history))
            try:
                context = await self.fetch_context()
                request = AnswerRequest(
                    persona=self._persona,
                    utterance=utterance,
                    context=context,
                    history=list(history),
                )
                self._logger.info(
                    "answer.request",
                    utterance=utterance,
                    history_len=len(history),
                    context_keys=sorted(context),
                )
                resp = await self._client.post("/chat", json=request.to_payload())
                resp.raise_for_status()
                data = resp.json()
            except (httpx.HTTPError, ValueError) as exc:
                annotate(span, failure=type(exc).__name__)
                return self._failed(f"{type(exc).__name__}: {exc}")

            raw = data.get("response") if isinstance(data, dict) else None
            if not isinstance(raw, str) or not raw.strip():
                return self._failed("response missing from backend payload")
            text = normalize_reply(raw)
            if not text:
                return self._failed("response empty after normalization")
            annotate(span, reply_chars=len(text))
            self._logger.info("answer.response", chars=len(text))
            return AnswerResult(text=text, raw_text=raw)

    def _failed(self, reason: str) -> AnswerResult:
        self._logger.error("answer.request.failed", reason=reason)
        return AnswerResult.failed(AnswerUnavailable(reason, self._settings.fallback_text))

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = ["AnswerServiceClient"]
