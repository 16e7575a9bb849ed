"""
Router for session endpoints.

Sessions are scoped by the user code in the path; the ``X-Device-ID``
header only records which device created a session.
"""

import logging
from typing import Optional

from fastapi import APIRouter
from fastapi import Depends
from fastapi import Header
from fastapi import HTTPException
from fastapi import Query
from fastapi import status
from sqlalchemy.orm import Session

from timetrack.constants import DEVICE_ID_HEADER
from timetrack.constants import UNKNOWN_DEVICE
from timetrack.crud import crud
from timetrack.database import get_db
from timetrack.metrics import sessions_created_total
from timetrack.schemas.schemas import DeleteSessionResponse
from timetrack.schemas.schemas import SessionListResponse
from timetrack.schemas.schemas import SessionRecord
from timetrack.schemas.schemas import StartSessionRequest
from timetrack.schemas.schemas import StartSessionResponse
from timetrack.schemas.schemas import UpdateSessionRequest
from timetrack.schemas.schemas import UpdateSessionResponse
from timetrack.utils.time import now_ms

logger = logging.getLogger(__name__)

router = APIRouter(
    tags=["sessions"],
)


@router.get("/{user_code}", response_model=SessionListResponse)
def list_sessions(
    user_code: str,
    since: Optional[int] = Query(None, description="Only sessions updated after this epoch-ms watermark"),
    include_deleted: bool = Query(False, alias="includeDeleted"),
    db: Session = Depends(get_db),
):
    """List sessions for a code, optionally only those changed since *since*."""
    # Captured before the query: the next incremental pull starts here.
    timestamp = now_ms()

    crud.touch_user_code(db, user_code)
    db.commit()

    rows = crud.list_sessions(db, user_code, since=since, include_deleted=include_deleted)
    return SessionListResponse(
        sessions=[SessionRecord.model_validate(row) for row in rows],
        timestamp=timestamp,
    )


@router.post("/{user_code}", response_model=StartSessionResponse)
def start_session(
    user_code: str,
    payload: StartSessionRequest,
    db: Session = Depends(get_db),
    device_id: Optional[str] = Header(default=None, alias=DEVICE_ID_HEADER),
):
    """Start a session; any other open session for the code is closed."""
    row = crud.create_session(
        db,
        user_code=user_code,
        device_id=device_id or UNKNOWN_DEVICE,
        start_time=payload.start_time,
        session_id=payload.session_id,
    )
    db.commit()
    sessions_created_total.inc()
    logger.info("Started session %s for code %s", row.id, user_code)
    return StartSessionResponse(sessionId=row.id, timestamp=row.updated_at)


@router.put("/{user_code}/{session_id}", response_model=UpdateSessionResponse)
def update_session(
    user_code: str,
    session_id: str,
    payload: UpdateSessionRequest,
    db: Session = Depends(get_db),
):
    """Partially update a live session (end it or edit its times)."""
    row = crud.update_session(db, user_code, session_id, payload.changes())
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    db.commit()
    return UpdateSessionResponse(updated=True, timestamp=row.updated_at)


@router.delete("/{user_code}/{session_id}", response_model=DeleteSessionResponse)
def delete_session(
    user_code: str,
    session_id: str,
    db: Session = Depends(get_db),
):
    """Soft-delete a session so the tombstone can propagate to other devices."""
    row = crud.soft_delete_session(db, user_code, session_id)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    db.commit()
    return DeleteSessionResponse(deleted=True, timestamp=row.updated_at)
