"""Request bodies for the messaging endpoints."""

from typing import List

from pydantic import BaseModel, Field


class SendTextRequest(BaseModel):
    to: str = Field(min_length=1, description="Recipient in E.164 format, e.g. +15551234567")
    body: str = Field(min_length=1, max_length=1600)
    media_urls: List[str] = Field(default_factory=list)


class StartCallRequest(BaseModel):
    to: str = Field(min_length=1)
    callback_url: str = Field(min_length=1, description="URL returning TwiML instructions for the call")
