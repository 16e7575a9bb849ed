"""Batch sync API router.

Offline clients push their whole pending-operation queue in one request.
Every operation is applied independently and idempotently; the response
reports per-operation success so the client can drop confirmed operations
and count retries for the rest.
"""

import logging
from typing import Any
from typing import List
from typing import Optional

from fastapi import APIRouter
from fastapi import Body
from fastapi import Depends
from fastapi import Header
from sqlalchemy.orm import Session

from timetrack.constants import DEVICE_ID_HEADER
from timetrack.constants import UNKNOWN_DEVICE
from timetrack.crud import crud
from timetrack.database import get_db
from timetrack.schemas.schemas import SyncResponse
from timetrack.services.operation_processor import process_operations
from timetrack.utils.time import now_ms

logger = logging.getLogger(__name__)

router = APIRouter(tags=["sync"])


@router.post("/{user_code}", response_model=SyncResponse)
def sync_operations(
    user_code: str,
    operations: List[Any] = Body(..., description="Pending operations from the client queue"),
    db: Session = Depends(get_db),
    device_id: Optional[str] = Header(default=None, alias=DEVICE_ID_HEADER),
) -> SyncResponse:
    """Apply queued operations from an offline device.

    Operations are validated one by one, so a malformed entry produces a
    failed result instead of rejecting the whole batch.
    """
    crud.touch_user_code(db, user_code)
    db.commit()

    results = process_operations(
        db,
        user_code=user_code,
        device_id=device_id or UNKNOWN_DEVICE,
        raw_operations=operations,
    )

    succeeded = sum(1 for r in results if r.success)
    logger.info(
        "Processed %d operations for code %s (%d succeeded, %d failed)",
        len(results),
        user_code,
        succeeded,
        len(results) - succeeded,
    )
    return SyncResponse(results=results, timestamp=now_ms())
