"""Server-side tables backing the remote session service.

All timestamps are integer epoch milliseconds (``BigInteger``) so the values
on the wire, in the database and in the client store are directly
comparable.
"""

from sqlalchemy import BigInteger
from sqlalchemy import Column
from sqlalchemy import Index
from sqlalchemy import String

from timetrack.database import Base


class UserCode(Base):
    """A shareable sync account code (``blue-robot-7``).

    Not a security boundary – whoever knows the code can read and write its
    sessions.
    """

    __tablename__ = "user_codes"

    code = Column(String, primary_key=True)
    created_at = Column(BigInteger, nullable=False)
    last_accessed = Column(BigInteger, nullable=False)


class WorkSession(Base):
    """A check-in/check-out interval owned by a user code.

    ``deleted_at`` is a soft tombstone: deleted rows stay in the table so the
    deletion can propagate to other devices through incremental sync.
    """

    __tablename__ = "sessions"
    __table_args__ = (
        Index("ix_sessions_user_code_updated_at", "user_code", "updated_at"),
        Index("ix_sessions_user_code_open", "user_code", "end_time", "deleted_at"),
    )

    id = Column(String, primary_key=True)
    user_code = Column(String, nullable=False, index=True)
    device_id = Column(String, nullable=False)

    start_time = Column(BigInteger, nullable=False)
    end_time = Column(BigInteger, nullable=True)  # NULL while checked in

    created_at = Column(BigInteger, nullable=False)
    updated_at = Column(BigInteger, nullable=False)  # Bumped on every mutation
    deleted_at = Column(BigInteger, nullable=True)
