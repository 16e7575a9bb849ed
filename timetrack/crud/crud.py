"""Persistence primitives for user codes and sessions.

Every mutating helper bumps ``updated_at`` only when a column actually
changes, so replaying the same operation twice leaves the row identical.
Helpers ``flush`` but never ``commit`` – the caller owns the transaction.
"""

import uuid
from typing import Callable
from typing import Dict
from typing import List
from typing import Optional

from sqlalchemy.orm import Session

from timetrack.constants import USER_CODE_MAX_ATTEMPTS
from timetrack.models.models import UserCode
from timetrack.models.models import WorkSession
from timetrack.utils.time import now_ms


class UserCodeExhaustedError(RuntimeError):
    """No unique user code could be minted within the attempt budget."""


# User code CRUD operations
def get_user_code(db: Session, code: str) -> Optional[UserCode]:
    return db.query(UserCode).filter(UserCode.code == code).first()


def create_user_code(
    db: Session,
    generate: Callable[[], str],
    *,
    max_attempts: int = USER_CODE_MAX_ATTEMPTS,
) -> UserCode:
    """Mint a code not present in storage yet.

    Raises:
        UserCodeExhaustedError: every candidate collided with an existing code.
    """
    for _ in range(max_attempts):
        candidate = generate()
        if get_user_code(db, candidate) is not None:
            continue

        now = now_ms()
        row = UserCode(code=candidate, created_at=now, last_accessed=now)
        db.add(row)
        db.flush()
        return row

    raise UserCodeExhaustedError(f"Unable to generate unique code after {max_attempts} attempts")


def touch_user_code(db: Session, code: str) -> None:
    """Record activity for *code* when it is a registered code."""
    db.query(UserCode).filter(UserCode.code == code).update(
        {UserCode.last_accessed: now_ms()}, synchronize_session=False
    )


# Session CRUD operations
def get_session(db: Session, user_code: str, session_id: str) -> Optional[WorkSession]:
    return (
        db.query(WorkSession)
        .filter(WorkSession.id == session_id, WorkSession.user_code == user_code)
        .first()
    )


def list_sessions(
    db: Session,
    user_code: str,
    *,
    since: Optional[int] = None,
    include_deleted: bool = False,
) -> List[WorkSession]:
    """Return sessions for *user_code* ordered by start time.

    ``since`` restricts the result to rows with ``updated_at > since``
    (incremental sync).  Tombstones are only returned on request.
    """
    query = db.query(WorkSession).filter(WorkSession.user_code == user_code)
    if not include_deleted:
        query = query.filter(WorkSession.deleted_at.is_(None))
    if since is not None:
        query = query.filter(WorkSession.updated_at > since)
    return query.order_by(WorkSession.start_time.asc(), WorkSession.id.asc()).all()


def get_open_sessions(db: Session, user_code: str) -> List[WorkSession]:
    return (
        db.query(WorkSession)
        .filter(
            WorkSession.user_code == user_code,
            WorkSession.end_time.is_(None),
            WorkSession.deleted_at.is_(None),
        )
        .all()
    )


def _settle_open_sessions(
    db: Session,
    user_code: str,
    start: int,
    now: int,
    *,
    exclude_id: Optional[str] = None,
) -> Optional[int]:
    """Make room for a session opening at *start*.

    Open sessions that started at or before *start* are closed there.  Returns
    the start of the earliest open session that began later, which is where
    the opening session has to end, or ``None`` when it may stay open.
    """
    end_time: Optional[int] = None
    for other in get_open_sessions(db, user_code):
        if other.id == exclude_id:
            continue
        if other.start_time <= start:
            other.end_time = start
            other.updated_at = now
        elif end_time is None or other.start_time < end_time:
            end_time = other.start_time
    return end_time


def create_session(
    db: Session,
    *,
    user_code: str,
    device_id: str,
    start_time: Optional[int] = None,
    session_id: Optional[str] = None,
) -> WorkSession:
    """Create a session and keep at most one session open for the code.

    Open sessions that started at or before the new one are closed at the new
    start time.  If another open session started *later* (an offline device
    replaying an older check-in), the new row is stored already closed at the
    start of that later session, so the latest check-in always stays open.

    Creating with a ``session_id`` that already exists for the code returns
    the existing row untouched.
    """
    if session_id is not None:
        existing = get_session(db, user_code, session_id)
        if existing is not None:
            return existing

    now = now_ms()
    start = start_time if start_time is not None else now
    end_time = _settle_open_sessions(db, user_code, start, now)

    row = WorkSession(
        id=session_id or str(uuid.uuid4()),
        user_code=user_code,
        device_id=device_id,
        start_time=start,
        end_time=end_time,
        created_at=now,
        updated_at=now,
    )
    db.add(row)
    db.flush()
    return row


def update_session(
    db: Session,
    user_code: str,
    session_id: str,
    changes: Dict[str, Optional[int]],
) -> Optional[WorkSession]:
    """Apply ``start_time``/``end_time`` changes to a live session.

    A change that leaves the row open (re-opening it with ``end_time=None`` or
    moving the start of the running session) goes through the same rule as
    :func:`create_session`, so at most one session stays open per code.

    Returns ``None`` when the session is missing or soft-deleted.
    """
    row = get_session(db, user_code, session_id)
    if row is None or row.deleted_at is not None:
        return None

    dirty = False
    for field in ("start_time", "end_time"):
        if field in changes and getattr(row, field) != changes[field]:
            setattr(row, field, changes[field])
            dirty = True

    if dirty:
        now = now_ms()
        if row.end_time is None:
            row.end_time = _settle_open_sessions(db, user_code, row.start_time, now, exclude_id=row.id)
        row.updated_at = now
        db.flush()
    return row


def soft_delete_session(db: Session, user_code: str, session_id: str) -> Optional[WorkSession]:
    """Tombstone a live session; ``None`` when missing or already deleted."""
    row = get_session(db, user_code, session_id)
    if row is None or row.deleted_at is not None:
        return None

    now = now_ms()
    row.deleted_at = now
    row.updated_at = now
    db.flush()
    return row
