"""Request and response bodies for the reader control surface."""

from typing import Any, Optional

from pydantic import BaseModel, Field


class ConnectRequest(BaseModel):
    # Any value is accepted; invalid ports fall back to the default
    port: Optional[Any] = Field(default=None, description="Channel port on localhost.")


class ConnectResponse(BaseModel):
    success: bool = True
    port: int


class StatusResponse(BaseModel):
    connected: bool
    speaking: bool


class PlayRequest(BaseModel):
    text: Optional[str] = Field(
        default=None,
        description="Text to speak. Falls back to the last selected text.",
    )


class ActionResponse(BaseModel):
    success: bool
    error: Optional[str] = None


class SelectedTextResponse(BaseModel):
    text: str


class TextSelectedRequest(BaseModel):
    text: str
