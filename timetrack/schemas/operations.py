"""Queued operations as a tagged union over the four mutation kinds.

Each kind carries its own payload model, so a ``start_session`` can never be
queued without a ``startTime`` and an ``end_session`` never without an
``endTime``.  Parse untrusted input with :data:`OperationAdapter`.
"""

from typing import Annotated
from typing import Any
from typing import Dict
from typing import Literal
from typing import Optional
from typing import Union

from pydantic import Field
from pydantic import TypeAdapter

from timetrack.models.enums import OperationType
from timetrack.schemas.schemas import CamelModel
from timetrack.schemas.schemas import UpdateSessionRequest


class StartSessionData(CamelModel):
    start_time: Optional[int] = None


class EndSessionData(CamelModel):
    end_time: int


class UpdateSessionData(UpdateSessionRequest):
    """Queued form of the ``PUT`` body; same partial-update rules."""


class DeleteSessionData(CamelModel):
    pass


class _OperationBase(CamelModel):
    id: str
    session_id: str
    timestamp: int
    retries: int = 0


class StartSessionOperation(_OperationBase):
    type: Literal["start_session"] = OperationType.START_SESSION.value
    data: StartSessionData


class EndSessionOperation(_OperationBase):
    type: Literal["end_session"] = OperationType.END_SESSION.value
    data: EndSessionData


class UpdateSessionOperation(_OperationBase):
    type: Literal["update_session"] = OperationType.UPDATE_SESSION.value
    data: UpdateSessionData

    def to_wire(self, **kwargs: Any) -> Dict[str, Any]:
        # Partial update: keep unset fields out so they are not nulled remotely.
        wire = super().to_wire(**kwargs)
        wire["data"] = self.data.to_wire(exclude_unset=True)
        return wire


class DeleteSessionOperation(_OperationBase):
    type: Literal["delete_session"] = OperationType.DELETE_SESSION.value
    data: DeleteSessionData = Field(default_factory=DeleteSessionData)


Operation = Annotated[
    Union[StartSessionOperation, EndSessionOperation, UpdateSessionOperation, DeleteSessionOperation],
    Field(discriminator="type"),
]

OperationAdapter: TypeAdapter[Operation] = TypeAdapter(Operation)


def build_operation(
    op_type: OperationType | str,
    *,
    operation_id: str,
    session_id: str,
    data: Dict[str, Any] | None,
    timestamp: int,
) -> Operation:
    """Validate a freshly enqueued operation into its concrete type."""

    return OperationAdapter.validate_python(
        {
            "id": operation_id,
            "type": OperationType(op_type).value,
            "sessionId": session_id,
            "data": data or {},
            "timestamp": timestamp,
            "retries": 0,
        }
    )


__all__ = [
    "StartSessionData",
    "EndSessionData",
    "UpdateSessionData",
    "DeleteSessionData",
    "StartSessionOperation",
    "EndSessionOperation",
    "UpdateSessionOperation",
    "DeleteSessionOperation",
    "Operation",
    "OperationAdapter",
    "build_operation",
]
