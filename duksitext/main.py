import logging
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from uuid import uuid4

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from duksitext.container import build_container
from duksitext.schemas import ChatRequest, ChatResponse, ErrorResponse, HealthResponse

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

_MESSAGE_REQUIRED = "Field 'message' is required and must be a string."


@asynccontextmanager
async def lifespan(_app: FastAPI):  # type: ignore[no-untyped-def]
    _app.state.started_at = datetime.now(UTC).isoformat()
    upstream = _app.state.container.reply_service.upstream
    logger.info(
        "duksitext_backend_ready port=%s model_api_url=%s",
        _app.state.container.settings.port,
        upstream.url or "none",
    )
    yield


app = FastAPI(title="DuksiText Backend", version="0.1.0", lifespan=lifespan)
app.state.container = build_container()
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def attach_trace_id(request: Request, call_next):  # type: ignore[no-untyped-def]
    trace_id = request.headers.get("x-trace-id") or str(uuid4())
    request.state.trace_id = trace_id
    response = await call_next(request)
    response.headers["x-trace-id"] = trace_id
    return response


@app.exception_handler(RequestValidationError)
async def bad_request(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = _describe_validation_error(exc)
    logger.info(
        "chat_bad_request trace_id=%s details=%s",
        getattr(request.state, "trace_id", None),
        details,
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ErrorResponse(error="bad_request", details=details).model_dump(),
    )


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse(ok=True)


@app.post(
    "/api/chat",
    response_model=ChatResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
def chat(req: ChatRequest, request: Request) -> ChatResponse | JSONResponse:
    trace_id = getattr(request.state, "trace_id", str(uuid4()))
    try:
        outcome = app.state.container.reply_service.reply(
            contact=req.contact,
            message=req.message,
            history=req.history,
        )
    except Exception as exc:
        logger.exception("chat_error trace_id=%s", trace_id)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(error="chat_error", details=str(exc) or repr(exc)).model_dump(),
        )
    logger.info(
        "chat_request trace_id=%s bot=%s source=%s",
        trace_id,
        outcome.bot,
        outcome.source,
    )
    return ChatResponse(reply=outcome.reply, bot=outcome.bot)


def _describe_validation_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    for error in errors:
        loc = error.get("loc") or ()
        if "message" in loc:
            return _MESSAGE_REQUIRED
    if errors:
        first = errors[0]
        if first.get("type") == "missing" and tuple(first.get("loc") or ()) == ("body",):
            return _MESSAGE_REQUIRED
        return str(first.get("msg") or "invalid request")
    return "invalid request"


def run() -> None:
    settings = app.state.container.settings
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
