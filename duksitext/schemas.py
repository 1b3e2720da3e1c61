from typing import Any, Literal

from pydantic import BaseModel, Field, StrictStr


class ChatRequest(BaseModel):
    message: StrictStr = Field(min_length=1)
    contact: Any = None
    history: Any = Field(default_factory=list)


class ChatResponse(BaseModel):
    reply: str
    bot: str


class ErrorResponse(BaseModel):
    error: Literal["bad_request", "chat_error"]
    details: str


class HealthResponse(BaseModel):
    ok: bool = True
