import time
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, Dict, Optional

from fastapi import FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, Field
from starlette.middleware.cors import CORSMiddleware

from .errors import ChatError, NotFoundError, UnauthenticatedError
from .gateway import Answer, QueryGateway
from .identity import get_identity_provider
from .middleware.request_id import RequestIdMiddleware
from .models import Message
from .notifications import ErrorChannel
from .observability import HTTP_REQUEST_DURATION_SECONDS, HTTP_REQUESTS_TOTAL, log_event
from .orchestrator import ChatOrchestrator
from .providers.factory import get_inference_client, get_telemetry_source
from .scheduling import Throttle
from .settings import Settings
from .store import SessionStore, UserProfile, UserStore
from .telemetry import TelemetryPoller

_STATUS_BY_KIND = {
    "Unauthenticated": 401,
    "NotFound": 404,
    "NotConfigured": 503,
    "Timeout": 504,
    "RemoteFunctionError": 502,
    "InvalidResponse": 502,
    "NetworkError": 502,
    "StorageError": 500,
}


class RegisterRequest(BaseModel):
    email: str
    clerkId: str
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    imageUrl: Optional[str] = None


class ChatMessageIn(BaseModel):
    sender: str
    text: str
    isMarkdown: bool = False
    timestamp: Optional[int] = None
    id: Optional[str] = None


class SaveMessageRequest(BaseModel):
    userId: str
    message: ChatMessageIn
    sessionId: Optional[str] = None


class AskRequest(BaseModel):
    prompt: str = Field(..., max_length=32_000)


def build_orchestrator(settings: Settings, users: Optional[UserStore] = None) -> ChatOrchestrator:
    """Construct the orchestrator and its collaborators from settings."""
    errors = ErrorChannel(ttl_seconds=settings.error_toast_seconds)
    store = SessionStore(
        settings.session_store_path,
        debounce_seconds=settings.persist_debounce_ms / 1000.0,
        errors=errors,
    )
    gateway = QueryGateway(
        get_inference_client(settings),
        Throttle(settings.ask_throttle_ms / 1000.0),
        errors,
        timeout_seconds=settings.inference_timeout_seconds,
    )
    poller = TelemetryPoller(
        get_telemetry_source(settings),
        errors,
        interval_seconds=settings.poll_interval_seconds,
        metrics_window=timedelta(hours=settings.metrics_window_hours),
        logs_window=timedelta(minutes=settings.logs_window_minutes),
        logs_limit=settings.logs_limit,
    )
    return ChatOrchestrator(store, gateway, poller, errors, users=users)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    # Missing identity configuration fails here, before the app can serve.
    identity = get_identity_provider(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        app.state.users = UserStore()
        app.state.orchestrator = build_orchestrator(settings, users=app.state.users)
        await app.state.orchestrator.start(poll=settings.poller_enabled)
        log_event(
            "startup",
            inferenceProvider=app.state.orchestrator.gateway.client.provider_name,
            telemetryProvider=app.state.orchestrator.poller.source.provider_name,
            identityProvider=identity.provider_name,
            functionName=settings.lambda_function_name or None,
        )
        try:
            yield
        finally:
            # Shutdown
            await app.state.orchestrator.shutdown()

    app = FastAPI(
        title="Debugger Chat API",
        description="Chat sessions against the debugger Lambda with CloudWatch telemetry.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.identity = identity
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-Id"],
        allow_credentials=False,
    )
    app.add_middleware(RequestIdMiddleware)

    # HTTP metrics middleware
    @app.middleware("http")
    async def _http_metrics_middleware(request: Request, call_next):
        t0 = time.perf_counter()
        method = request.method
        path = request.url.path
        status_code = 500
        try:
            response = await call_next(request)
            status_code = getattr(response, "status_code", 500)
            return response
        finally:
            try:
                status_class = f"{status_code // 100}xx"
                HTTP_REQUESTS_TOTAL.labels(method=method, path=path, status_class=status_class).inc()
                HTTP_REQUEST_DURATION_SECONDS.labels(method=method, path=path).observe(time.perf_counter() - t0)
            except Exception:
                pass

    @app.exception_handler(ChatError)
    async def _chat_error_handler(request: Request, exc: ChatError):
        return JSONResponse(
            status_code=_STATUS_BY_KIND.get(exc.kind, 500),
            content={"message": exc.message, "kind": exc.kind},
        )

    @app.get("/health", tags=["meta"], description="Liveness endpoint for health checks.")
    async def health():
        return {"status": "ok"}

    @app.get("/metrics", tags=["meta"], include_in_schema=False)
    async def metrics():
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # ----- users (server-side profile + history) -----

    @app.post("/api/users/register", tags=["users"], status_code=201)
    async def register_user(body: RegisterRequest, request: Request):
        profile = UserProfile(
            clerk_id=body.clerkId,
            email=body.email,
            first_name=body.firstName,
            last_name=body.lastName,
            image_url=body.imageUrl,
        )
        try:
            await request.app.state.users.register(profile)
        except ValueError as e:
            return JSONResponse(status_code=400, content={"message": str(e)})
        return profile.to_dict()

    @app.get("/api/users/user/{clerk_id}", tags=["users"])
    async def get_user(clerk_id: str, request: Request):
        user = await request.app.state.users.get(clerk_id)
        return user.to_dict()

    @app.post("/api/users/chat", tags=["users"], status_code=201)
    async def save_message(body: SaveMessageRequest, request: Request):
        try:
            message = Message.from_dict(body.message.model_dump())
        except ValueError as e:
            return JSONResponse(status_code=400, content={"message": str(e)})
        await request.app.state.users.append_message(body.userId, message)
        return message.to_dict()

    @app.get("/api/users/chat/{user_id}", tags=["users"])
    async def chat_history(
        user_id: str,
        request: Request,
        page: int = Query(1, ge=1),
        limit: int = Query(20, ge=1, le=200),
    ):
        return await request.app.state.users.history(user_id, page=page, limit=limit)

    @app.delete("/api/users/chat/{user_id}", tags=["users"])
    async def clear_history(user_id: str, request: Request):
        await request.app.state.users.clear_history(user_id)
        return {"message": "Chat history cleared"}

    # ----- chat (orchestrator) -----

    @app.get("/chat/state", tags=["chat"])
    async def chat_state(request: Request):
        return request.app.state.orchestrator.state()

    @app.post("/chat/ask", tags=["chat"])
    async def chat_ask(body: AskRequest, request: Request, x_user_id: Optional[str] = Header(None)):
        orch: ChatOrchestrator = request.app.state.orchestrator
        user = await request.app.state.identity.resolve(x_user_id)
        result = await orch.ask(body.prompt, user)
        payload: Dict[str, Any] = {"state": orch.state()}
        if result is None:
            payload["accepted"] = False
            return payload
        payload["accepted"] = True
        if isinstance(result, Answer):
            payload["answer"] = {"text": result.text, "isMarkdown": result.is_markdown}
        else:
            payload["error"] = {"kind": result.kind, "message": result.message}
            if result.kind == UnauthenticatedError.kind:
                return JSONResponse(status_code=401, content=payload)
        return payload

    @app.post("/chat/sessions", tags=["chat"], status_code=201)
    async def chat_new(request: Request):
        orch: ChatOrchestrator = request.app.state.orchestrator
        session = orch.new_chat()
        return {"sessionId": session.id, "state": orch.state()}

    @app.post("/chat/sessions/{session_id}/switch", tags=["chat"])
    async def chat_switch(session_id: str, request: Request):
        orch: ChatOrchestrator = request.app.state.orchestrator
        orch.switch_session(session_id)
        return orch.state()

    @app.delete("/chat/sessions/{session_id}", tags=["chat"])
    async def chat_delete(session_id: str, request: Request):
        orch: ChatOrchestrator = request.app.state.orchestrator
        if not any(s.id == session_id for s in orch.sessions):
            raise NotFoundError("Session not found")
        orch.request_delete(session_id)
        orch.confirm_delete()
        return orch.state()

    @app.post("/chat/notifications/{notification_id}/dismiss", tags=["chat"])
    async def dismiss_notification(notification_id: str, request: Request):
        orch: ChatOrchestrator = request.app.state.orchestrator
        if not orch.errors.dismiss(notification_id):
            raise NotFoundError("Notification not found")
        return {"dismissed": notification_id}

    @app.get("/telemetry", tags=["telemetry"])
    async def telemetry(request: Request):
        return request.app.state.orchestrator.poller.state.to_dict()

    return app


app = create_app()
