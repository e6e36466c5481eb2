"""Per-request session: who is calling, passed explicitly to every service."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from starlette.requests import Request

from youphoria.core.errors import ValidationError

USER_HEADER = "X-User-Id"
MAX_USER_ID_LENGTH = 128


@dataclass(frozen=True)
class RequestSession:
    user_id: str
    client_ip: str = "unknown"
    request_id: str = ""
    extra: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_request(cls, request: Request, body: dict[str, Any] | None = None) -> RequestSession:
        """Build a session from the ``X-User-Id`` header, else a ``userId`` field.

        Raises:
            ValidationError: No usable user id was supplied.
        """
        user_id = (
            request.headers.get(USER_HEADER)
            or request.query_params.get("userId")
            or (body or {}).get("userId")
            or ""
        )
        if not isinstance(user_id, str):
            raise ValidationError("userId must be a string")
        user_id = user_id.strip()
        if not user_id:
            raise ValidationError(f"{USER_HEADER} header or userId is required")
        if len(user_id) > MAX_USER_ID_LENGTH:
            raise ValidationError("userId is too long")
        return cls(
            user_id=user_id,
            client_ip=request.client.host if request.client else "unknown",
            request_id=request.headers.get("X-Request-Id", ""),
        )
