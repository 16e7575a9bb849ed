"""Apply a batch of queued client operations against the sessions table.

Each operation is committed on its own: one failing operation never rolls
back its neighbours, and the outcome of every operation is reported back so
the client can drop or retry it.

All four kinds are idempotent on replay:

* ``start_session`` adopts the client's session id, a repeat is a no-op.
* ``end_session`` / ``update_session`` are conditional updates.
* ``delete_session`` on an existing tombstone reports success.
"""

import logging
from typing import Any
from typing import Dict
from typing import List

from pydantic import ValidationError
from sqlalchemy.orm import Session

from timetrack.crud import crud
from timetrack.metrics import sessions_created_total
from timetrack.metrics import sync_operations_processed_total
from timetrack.models.enums import OperationType
from timetrack.schemas.operations import DeleteSessionOperation
from timetrack.schemas.operations import EndSessionOperation
from timetrack.schemas.operations import Operation
from timetrack.schemas.operations import OperationAdapter
from timetrack.schemas.operations import StartSessionOperation
from timetrack.schemas.operations import UpdateSessionOperation
from timetrack.schemas.schemas import OperationResult

logger = logging.getLogger(__name__)

_KNOWN_TYPES = {t.value for t in OperationType}


class OperationFailed(Exception):
    """The operation was understood but could not be applied."""


def _apply(db: Session, user_code: str, device_id: str, op: Operation) -> Dict[str, Any]:
    if isinstance(op, StartSessionOperation):
        row = crud.create_session(
            db,
            user_code=user_code,
            device_id=device_id,
            start_time=op.data.start_time,
            session_id=op.session_id,
        )
        sessions_created_total.inc()
        return {"sessionId": row.id, "timestamp": row.updated_at}

    if isinstance(op, EndSessionOperation):
        row = crud.update_session(db, user_code, op.session_id, {"end_time": op.data.end_time})
        if row is None:
            raise OperationFailed("Session not found")
        return {"updated": True, "timestamp": row.updated_at}

    if isinstance(op, UpdateSessionOperation):
        row = crud.update_session(db, user_code, op.session_id, op.data.changes())
        if row is None:
            raise OperationFailed("Session not found")
        return {"updated": True, "timestamp": row.updated_at}

    if isinstance(op, DeleteSessionOperation):
        existing = crud.get_session(db, user_code, op.session_id)
        if existing is None:
            raise OperationFailed("Session not found")
        if existing.deleted_at is not None:
            return {"deleted": True, "timestamp": existing.deleted_at}
        row = crud.soft_delete_session(db, user_code, op.session_id)
        return {"deleted": True, "timestamp": row.updated_at}

    raise OperationFailed("Unknown operation type")  # pragma: no cover – union is closed


def _parse(raw: Any) -> Operation:
    if not isinstance(raw, dict) or raw.get("type") not in _KNOWN_TYPES:
        raise OperationFailed("Unknown operation type")
    try:
        return OperationAdapter.validate_python(raw)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise OperationFailed(f"Invalid operation: {location}: {first['msg']}") from exc


def process_operations(
    db: Session,
    *,
    user_code: str,
    device_id: str,
    raw_operations: List[Any],
) -> List[OperationResult]:
    """Apply *raw_operations* in order and return one result per operation."""
    results: List[OperationResult] = []

    for raw in raw_operations:
        operation_id = raw.get("id") if isinstance(raw, dict) else None

        try:
            op = _parse(raw)
        except OperationFailed as exc:
            logger.warning("Rejected operation %s: %s", operation_id, exc)
            sync_operations_processed_total.labels("unknown", "invalid").inc()
            results.append(OperationResult(operationId=operation_id, success=False, error=str(exc)))
            continue

        try:
            data = _apply(db, user_code, device_id, op)
            db.commit()
        except OperationFailed as exc:
            db.rollback()
            sync_operations_processed_total.labels(op.type, "failed").inc()
            results.append(OperationResult(operationId=op.id, success=False, error=str(exc)))
            continue
        except Exception as exc:  # noqa: BLE001 – report and continue with the next op
            db.rollback()
            logger.exception("Operation %s (%s) failed unexpectedly", op.id, op.type)
            sync_operations_processed_total.labels(op.type, "error").inc()
            results.append(OperationResult(operationId=op.id, success=False, error=str(exc)))
            continue

        sync_operations_processed_total.labels(op.type, "success").inc()
        results.append(OperationResult(operationId=op.id, success=True, data=data))

    return results
