"""FastAPI server — WebSocket endpoints for the app pipeline and the voice relay."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from starlette.websockets import WebSocketState

from src.config import Settings
from src.pipeline.dispatcher import CommandDispatcher
from src.pipeline.session import Session
from src.tools.app_generator import AppGenerator, build_model
from src.tools.github_publisher import GitHubPublisher
from src.tools.vercel_deployer import VercelDeployer
from src.voice.recognizer import RecognizerFactory, deepgram_factory
from src.voice.speech_session import SpeechSession

logger = logging.getLogger("sanka")


# ---------------------------------------------------------------------------
# WebSocket helpers
# ---------------------------------------------------------------------------

def _origin_allowed(websocket: WebSocket, settings: Settings) -> bool:
    origins = settings.origins
    if "*" in origins:
        return True
    origin = websocket.headers.get("origin", "")
    return bool(origin) and origin in origins


def _safe_sender(websocket: WebSocket):
    """JSON sender that drops payloads once the socket has gone away."""

    async def send(payload: dict[str, Any]) -> None:
        if websocket.application_state != WebSocketState.CONNECTED:
            return
        try:
            await websocket.send_json(payload)
        except Exception as e:
            logger.debug("Dropped outbound message (socket closed): %s", e)

    return send


async def _reject_or_accept(websocket: WebSocket, settings: Settings, label: str) -> bool:
    if not _origin_allowed(websocket, settings):
        # Closing before accept makes the server answer the upgrade with 403
        logger.info("Blocked %s WS upgrade from: %r", label, websocket.headers.get("origin", ""))
        await websocket.close(code=1008)
        return False
    await websocket.accept()
    return True


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

def _register_routes(application: FastAPI) -> None:

    @application.get("/", response_class=PlainTextResponse)
    async def banner():
        return "Sanka MCP WebSocket server running\n"

    @application.get("/api/health")
    async def health_check():
        return {"status": "ok", "service": "sanka"}

    # ---- /ws/mcp: generate → push → deploy --------------------------------

    @application.websocket("/ws/mcp")
    async def websocket_mcp(websocket: WebSocket):
        """Session-scoped command pipeline.

        Protocol:
          Client → Server:
            {"command": "...", "github_token"?: "...", "vercel_token"?: "..."}
          Server → Client:
            {"bot": {"mess": "...", "zip"?: "<base64>", "link"?: "..."}}
        """
        settings: Settings = application.state.settings
        if not await _reject_or_accept(websocket, settings, "MCP"):
            return
        logger.info("MCP client connected")

        dispatcher: CommandDispatcher = application.state.dispatcher
        session = Session()
        send = _safe_sender(websocket)
        try:
            while True:
                raw = await websocket.receive_text()
                await dispatcher.handle(raw, session, send)
        except WebSocketDisconnect:
            pass
        finally:
            logger.info("MCP client disconnected")

    # ---- /ws/speech: streaming transcription + TTS ------------------------

    @application.websocket("/ws/speech")
    async def websocket_speech(websocket: WebSocket):
        """Voice relay.

        Protocol:
          Client → Server:
            {"event": "start" | "audio" | "stop" | "tts", "audio"?: ..., "text"?: ...}
            binary frames are treated as audio chunks
          Server → Client:
            {"transcript": "...", "isFinal": bool}
            {"final": "..."}
            {"audio": "<base64>", "text": "..."}
            {"error": "...", "message"?: "..."}
            {"echo_server": {...}}
        """
        settings: Settings = application.state.settings
        if not await _reject_or_accept(websocket, settings, "speech"):
            return
        logger.info("Speech client connected")

        speech = SpeechSession(
            _safe_sender(websocket),
            getattr(application.state, "recognizer_factory", None),
            getattr(application.state, "tts", None),
            silence_timeout=settings.silence_timeout_ms / 1000,
            restart_delay=settings.restart_stt_after_tts_ms / 1000,
            auto_reply=settings.auto_tts_on_final,
            user_name=settings.reply_user_name,
        )
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                if message.get("bytes"):
                    await speech.handle_audio(message["bytes"])
                elif message.get("text") is not None:
                    await speech.handle(message["text"])
        except WebSocketDisconnect:
            pass
        except Exception as e:
            logger.error("Speech WebSocket error: %s", e)
        finally:
            await speech.close()
            logger.info("Speech client disconnected")


# ---------------------------------------------------------------------------
# Lifespan: build the remote clients once on startup
# ---------------------------------------------------------------------------

def build_dispatcher(settings: Settings, http_client: httpx.AsyncClient) -> CommandDispatcher:
    generator = AppGenerator(
        build_model(settings.anthropic_api_key, settings.anthropic_model),
        template_dir=settings.template_dir if settings.generation_strategy == "template" else None,
    )
    publisher = GitHubPublisher(
        ref_attempts=settings.publish_ref_attempts,
        ref_delay=settings.publish_ref_delay,
    )
    deployer = VercelDeployer(
        http_client,
        api_url=settings.vercel_api_url,
        team_id=settings.vercel_team_id,
        poll_interval=settings.deploy_poll_interval,
        timeout=settings.deploy_timeout,
    )
    return CommandDispatcher(generator, publisher, deployer, settings)


@asynccontextmanager
async def lifespan(application: FastAPI):
    settings = Settings()

    if not settings.anthropic_api_key:
        raise RuntimeError("Missing required: ANTHROPIC_API_KEY")
    if settings.generation_strategy not in ("generate", "template"):
        raise RuntimeError(f"Unknown GENERATION_STRATEGY: {settings.generation_strategy}")
    if not settings.github_token:
        logger.warning("GITHUB_TOKEN not set — clients must send github_token")
    if not settings.vercel_token:
        logger.warning("VERCEL_TOKEN not set — clients must send vercel_token")

    http_client = httpx.AsyncClient(timeout=30.0)
    application.state.settings = settings
    application.state.dispatcher = build_dispatcher(settings, http_client)

    # --- Optional: TTS service ---
    try:
        from src.voice.tts_service import TTSService

        application.state.tts = TTSService(settings)
    except (ImportError, ValueError) as e:
        logger.warning("TTS init failed (synthesis disabled): %s", e)

    # --- Optional: streaming recognition ---
    if settings.deepgram_api_key:
        application.state.recognizer_factory = deepgram_factory(
            settings.deepgram_api_key, sample_rate=settings.stt_sample_rate
        )
    else:
        logger.warning("DEEPGRAM_API_KEY not set — speech recognition disabled")

    logger.info("Sanka server started on %s:%s", settings.host, settings.port)
    try:
        yield
    finally:
        await http_client.aclose()


# ---------------------------------------------------------------------------
# App factory + default instance
# ---------------------------------------------------------------------------

def create_app(
    settings: Settings | None = None,
    dispatcher: CommandDispatcher | None = None,
    recognizer_factory: RecognizerFactory | None = None,
    tts: Any | None = None,
) -> FastAPI:
    """Create and return the FastAPI application.

    When *settings* is provided the lifespan hook is skipped and the given
    collaborators are used as-is (useful for testing).
    """
    use_lifespan = settings is None

    application = FastAPI(
        title="Sanka API",
        description="Describe an app, get it generated, pushed and deployed",
        version="0.1.0",
        lifespan=lifespan if use_lifespan else None,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.origins if settings is not None else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if settings is not None:
        application.state.settings = settings
    if dispatcher is not None:
        application.state.dispatcher = dispatcher
    if recognizer_factory is not None:
        application.state.recognizer_factory = recognizer_factory
    if tts is not None:
        application.state.tts = tts

    _register_routes(application)
    return application


# Default app instance: used by ``uvicorn src.api.server:app``
app = create_app()
