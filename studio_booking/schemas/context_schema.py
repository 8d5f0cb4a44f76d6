"""Per-request caller identity."""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class Role(str, Enum):
    CLIENT = "client"
    ENGINEER = "engineer"
    ADMIN = "admin"


def _new_request_id() -> str:
    return f"REQ-{uuid.uuid4().hex[:8]}"


@dataclass(frozen=True)
class RequestContext:
    """
    Identity of the caller for one request.

    Passed explicitly into every orchestrator operation instead of reading
    a global session user, so concurrent requests never share identity.
    """
    user_id: str
    role: Role = Role.CLIENT
    email: Optional[str] = None
    request_id: str = field(default_factory=_new_request_id)

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN
