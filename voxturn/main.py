from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import Body, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from voxturn.answer.client import AnswerServiceClient
from voxturn.audio.output import AudioOutput
from voxturn.audio.playback import PlaybackEngine
from voxturn.config import AppSettings, load_settings
from voxturn.orchestrator.policies import TurnPolicies
from voxturn.orchestrator.state_machine import TurnController
from voxturn.recognition.realtimestt import realtime_engine_factory
from voxturn.telemetry.logging import configure_logging, get_logger
from voxturn.telemetry.tracing import configure_tracing
from voxturn.tts.client import SpeechSynthesisClient
from voxturn.tts.voices import VoiceCatalogue, load_catalogue, load_catalogue_file
from voxturn.ui.actions import ACTIONS, UnknownAction, apply_action
from voxturn.ui.websocket import FloatingUIBridge

settings = load_settings()
configure_logging(settings.telemetry.log_level)
configure_tracing("voxturn", settings.telemetry.otlp_endpoint)
logger = get_logger(__name__)

ui_bridge = FloatingUIBridge()


class Runtime:
    """Everything one voice session needs, created at startup and torn down at shutdown."""

    def __init__(self, settings: AppSettings) -> None:
        self.settings = settings
        playback_settings = settings.playback
        if playback_settings.voices_path is not None:
            self.catalogue: VoiceCatalogue = load_catalogue_file(playback_settings.voices_path)
        else:
            self.catalogue = load_catalogue()
        self.answer_client = AnswerServiceClient(settings.backend)
        self.tts_client = SpeechSynthesisClient(settings.backend)
        self.playback = PlaybackEngine(
            synthesizer=self.tts_client,
            output=AudioOutput(device=playback_settings.output_device),
            voice=playback_settings.voice,
            lang=playback_settings.lang,
            rate=playback_settings.rate,
        )
        self.controller = TurnController(
            answer_service=self.answer_client,
            playback=self.playback,
            engine_factory=realtime_engine_factory(settings.recognition),
            lang=settings.recognition.lang,
            policies=TurnPolicies.from_settings(settings.turn),
            catalogue=self.catalogue,
        )

    async def shutdown(self) -> None:
        self.controller.dispose()
        await self.answer_client.aclose()
        await self.tts_client.aclose()
        logger.info("runtime.shutdown")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    runtime = Runtime(settings)
    app.state.runtime = runtime
    ui_bridge.attach(runtime.controller)
    runtime.controller.greet()
    logger.info("runtime.started", backend=settings.backend.base_url, lang=settings.recognition.lang)
    try:
        yield
    finally:
        ui_bridge.detach()
        await runtime.shutdown()


app = FastAPI(title="voxturn", lifespan=lifespan)
app.include_router(ui_bridge.router)

origins = {settings.ui.floating_ui_origin}
if "localhost" in settings.ui.floating_ui_origin:
    origins.add(settings.ui.floating_ui_origin.replace("localhost", "127.0.0.1"))
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(origins),
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=True,
)


def _runtime() -> Runtime:
    runtime = getattr(app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="runtime unavailable")
    return runtime


@app.get("/state")
async def get_state() -> dict[str, Any]:
    return _runtime().controller.snapshot().to_dict()


@app.get("/voices")
async def list_voices() -> dict[str, Any]:
    runtime = _runtime()
    return {
        "languages": runtime.catalogue.languages(),
        "voices": [voice.to_dict() for voice in runtime.catalogue.voices()],
        "selected": {"voice": runtime.controller.voice, "lang": runtime.controller.lang},
    }


@app.post("/actions/{action}")
async def run_action(action: str, payload: dict[str, Any] | None = Body(default=None)) -> dict[str, Any]:
    runtime = _runtime()
    try:
        result = apply_action(runtime.controller, action, payload)
    except UnknownAction as exc:
        raise HTTPException(status_code=404, detail={"error": str(exc), "actions": list(ACTIONS)})
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    logger.info("action.applied", action=action, result=result)
    return {"action": action, "result": result}


def run() -> None:
    import uvicorn

    uvicorn.run("voxturn.main:app", host=settings.ui.host, port=settings.ui.port)


if __name__ == "__main__":
    run()
