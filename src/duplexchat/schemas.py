"""Validated inputs handed from the command line to the chat core.

The core trusts a ChatTarget: role exclusivity and port range are checked
here once, never again downstream.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class Role(str, Enum):
    LISTEN = "listen"
    CONNECT = "connect"


class ChatTarget(BaseModel):
    role: Role = Field(..., description="listen (accept one peer) or connect (dial out)")
    address: str = Field(..., min_length=1, description="IPv4 or IPv6 literal")
    port: int = Field(..., ge=0, le=65535, description="TCP port")

    model_config = {"extra": "forbid", "frozen": True}
