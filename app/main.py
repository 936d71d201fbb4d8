from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Form, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from chat.core.memory import DEFAULT_SESSION_KEY, InMemorySessionMemory, JsonFileSessionMemory, SessionMemory
from chat.errors import FragmentEncodingError
from chat.fragments import FragmentEncoder, FragmentRenderer
from chat.llm import GenerationClient, LangChainGenerationClient
from chat.models import ChatRequest
from chat.orchestrator import ChatConfig, TurnOrchestrator
from config.settings import Settings, get_settings


TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

logging.basicConfig(level=get_settings().log_level.upper(), format="[%(asctime)s] %(levelname)s - %(message)s")
logger = logging.getLogger("fragchat")


def build_memory(settings: Settings, window: Optional[int]) -> SessionMemory:
    if settings.memory_path:
        logger.info("Session memory: json files under %s (window=%s)", settings.memory_path, window)
        return JsonFileSessionMemory(settings.memory_path, history_window=window)
    logger.info("Session memory: in-process (window=%s)", window)
    return InMemorySessionMemory(history_window=window)


def create_app(
    settings: Optional[Settings] = None,
    memory: Optional[SessionMemory] = None,
    client: Optional[GenerationClient] = None,
) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title="fragchat", version="1.0.0")

    # CORS: allow local frontend during development
    if settings.app_env.lower() in {"dev", "development", "local"}:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    config = ChatConfig.from_settings(settings)
    templates = Jinja2Templates(directory=str(TEMPLATES_DIR))
    app.state.settings = settings
    app.state.templates = templates
    app.state.encoder = FragmentEncoder(FragmentRenderer(templates.env))
    app.state.orchestrator = TurnOrchestrator(
        memory if memory is not None else build_memory(settings, config.history_window),
        client if client is not None else LangChainGenerationClient(system_prompt=settings.system_prompt),
        config,
    )
    app.include_router(router)
    return app


def get_orchestrator(request: Request) -> TurnOrchestrator:
    return request.app.state.orchestrator


def get_encoder(request: Request) -> FragmentEncoder:
    return request.app.state.encoder


def session_key_for(request: Request) -> tuple[str, bool]:
    """Return the caller's session key and whether it was just issued."""
    cookie_name = request.app.state.settings.session_cookie_name
    if not cookie_name:
        return DEFAULT_SESSION_KEY, False
    existing = request.cookies.get(cookie_name)
    if existing:
        return existing, False
    return uuid.uuid4().hex, True


def _with_session_cookie(request: Request, response: HTMLResponse, session_key: str, issued: bool) -> HTMLResponse:
    if issued:
        response.set_cookie(
            request.app.state.settings.session_cookie_name,
            session_key,
            httponly=True,
            samesite="lax",
        )
    return response


router = APIRouter()


@router.get("/", response_class=HTMLResponse)
def home(request: Request, orchestrator: TurnOrchestrator = Depends(get_orchestrator)):
    session_key, issued = session_key_for(request)
    response = request.app.state.templates.TemplateResponse(
        request,
        "index.html",
        {
            "title": "fragchat",
            "turns": orchestrator.transcript(session_key),
            "oob": False,
            "max_message_length": orchestrator.config.max_message_length,
        },
    )
    return _with_session_cookie(request, response, session_key, issued)


@router.post("/api/chat", response_class=HTMLResponse)
def chat(
    request: Request,
    message: str = Form(""),
    thinking_id: Optional[str] = Form(None, alias="thinkingId"),
    client_transaction_id: Optional[str] = Form(None, alias="clientTransactionId"),
    orchestrator: TurnOrchestrator = Depends(get_orchestrator),
    encoder: FragmentEncoder = Depends(get_encoder),
):
    session_key, issued = session_key_for(request)
    req = ChatRequest(message=message, client_transaction_id=thinking_id or client_transaction_id)
    logger.debug("User message: %s", req.message)

    try:
        fragments = orchestrator.handle_turn(req, session_key)
        body = encoder.encode(fragments)
    except FragmentEncodingError as e:
        logger.exception("Fragment encoding failed: %s", e)
        raise HTTPException(status_code=500, detail="Could not render the response")
    except Exception as e:
        logger.exception("Chat processing failed: %s", e)
        raise HTTPException(status_code=500, detail="Chat processing failed")

    logger.info("Responded with fragments=%s", fragments.names())
    return _with_session_cookie(request, HTMLResponse(body), session_key, issued)


@router.get("/health")
def health():
    return {"status": "ok"}


app = create_app()
