# backend/services/request_context.py
from dataclasses import dataclass
from typing import Optional

from fastapi import Request


@dataclass(frozen=True)
class RequestContext:
    """Client details attached to audit events"""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    session_id: Optional[str] = None

    @classmethod
    def from_request(cls, request: Request) -> "RequestContext":
        headers = request.headers

        ip_address = None
        forwarded_for = headers.get("x-forwarded-for")
        if forwarded_for:
            ip_address = forwarded_for.split(",")[0].strip() or None
        if not ip_address:
            ip_address = headers.get("x-real-ip")
        if not ip_address and request.client:
            ip_address = request.client.host

        return cls(
            ip_address=ip_address,
            user_agent=headers.get("user-agent"),
            session_id=headers.get("x-session-id"),
        )
