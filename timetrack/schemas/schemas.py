"""Wire models shared by the session service and the sync client.

Attributes are snake_case in Python and camelCase on the wire
(``startTime``, ``updatedAt`` …), matching what existing clients send.
"""

from typing import Any
from typing import Dict
from typing import List
from typing import Optional

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    def to_wire(self, **kwargs: Any) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, **kwargs)


# ---------------------------------------------------------------------------
# Session record
# ---------------------------------------------------------------------------


class SessionRecord(CamelModel):
    """A single check-in/check-out interval as stored locally and remotely."""

    id: str
    device_id: str
    start_time: int
    end_time: Optional[int] = None
    created_at: int
    updated_at: int
    deleted_at: Optional[int] = None

    @property
    def is_open(self) -> bool:
        return self.end_time is None and self.deleted_at is None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class StartSessionRequest(CamelModel):
    start_time: Optional[int] = None
    # Lets an offline-first client keep the id of its optimistic local copy.
    session_id: Optional[str] = None


class UpdateSessionRequest(CamelModel):
    """Partial update – only the fields present in the payload are applied.

    An explicit ``"endTime": null`` re-opens a session; it stays open only
    while no later session is running.
    """

    start_time: Optional[int] = None
    end_time: Optional[int] = None

    def changes(self) -> Dict[str, Optional[int]]:
        return {name: getattr(self, name) for name in ("start_time", "end_time") if name in self.model_fields_set}


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class UserCodeResponse(BaseModel):
    code: str


class SessionListResponse(BaseModel):
    sessions: List[SessionRecord]
    timestamp: int


class StartSessionResponse(BaseModel):
    sessionId: str
    timestamp: int


class UpdateSessionResponse(BaseModel):
    updated: bool
    timestamp: int


class DeleteSessionResponse(BaseModel):
    deleted: bool
    timestamp: int


class OperationResult(BaseModel):
    operationId: Optional[str] = None
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class SyncResponse(BaseModel):
    results: List[OperationResult]
    timestamp: int
