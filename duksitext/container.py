from __future__ import annotations

from dataclasses import dataclass
from os import getenv

from duksitext.services.reply_service import ReplyService
from duksitext.services.upstream import UpstreamReplyClient

DEFAULT_PORT = 3000
DEFAULT_STATE_FILE = "./data/duksitext_state.json"
DEFAULT_API_BASE = "http://localhost:3000"


@dataclass
class ServerSettings:
    host: str
    port: int
    model_api_url: str | None
    model_api_timeout_sec: float


@dataclass
class ServiceContainer:
    settings: ServerSettings
    reply_service: ReplyService


def load_server_settings() -> ServerSettings:
    return ServerSettings(
        host=getenv("HOST", "0.0.0.0").strip() or "0.0.0.0",
        port=_parse_int(getenv("PORT"), default=DEFAULT_PORT),
        model_api_url=(getenv("MODEL_API_URL") or "").strip() or None,
        model_api_timeout_sec=_parse_float(getenv("MODEL_API_TIMEOUT_SEC"), default=12.0),
    )


def build_container() -> ServiceContainer:
    settings = load_server_settings()
    upstream = UpstreamReplyClient(
        url=settings.model_api_url,
        timeout_sec=settings.model_api_timeout_sec,
    )
    return ServiceContainer(
        settings=settings,
        reply_service=ReplyService(upstream=upstream),
    )


def default_state_file() -> str:
    return (getenv("DUKSITEXT_STATE_FILE") or "").strip() or DEFAULT_STATE_FILE


def default_api_base() -> str:
    return (getenv("DUKSITEXT_API_BASE") or "").strip() or DEFAULT_API_BASE


def _parse_int(value: str | None, *, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _parse_float(value: str | None, *, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def parse_bool(value: str | None, *, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default
