"""Mint shareable sync codes."""

import logging

from fastapi import APIRouter
from fastapi import Depends
from fastapi import HTTPException
from fastapi import status
from sqlalchemy.orm import Session

from timetrack.crud import crud
from timetrack.database import get_db
from timetrack.metrics import user_codes_generated_total
from timetrack.schemas.schemas import UserCodeResponse
from timetrack.services.passphrase import generate_passphrase

logger = logging.getLogger(__name__)

router = APIRouter(tags=["user-code"])


@router.post("", response_model=UserCodeResponse)
def generate_user_code(db: Session = Depends(get_db)):
    """Generate a new unique user code (``adjective-noun-digit``)."""
    try:
        row = crud.create_user_code(db, generate_passphrase)
    except crud.UserCodeExhaustedError as exc:
        db.rollback()
        logger.error("User code space exhausted: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Unable to generate unique code",
        )

    db.commit()
    user_codes_generated_total.inc()
    return UserCodeResponse(code=row.code)
