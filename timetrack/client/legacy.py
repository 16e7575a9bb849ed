"""Import of legacy check-in/check-out logs into sessions.

Older installs stored a flat list of ``{"type": "Check In" | "Check Out",
"timestamp": <ms>}`` entries.  They are paired into sessions once, the first
time the session store starts without any stored sessions.
"""

from __future__ import annotations

import uuid
from typing import Any
from typing import Dict
from typing import Iterable
from typing import List
from typing import Optional

from timetrack.schemas.schemas import SessionRecord

CHECK_IN = "Check In"
CHECK_OUT = "Check Out"


def convert_logs_to_sessions(logs: Iterable[Dict[str, Any]], *, device_id: str) -> List[SessionRecord]:
    """Pair check-in/check-out logs into sessions.

    A check-in while a session is open closes that session at the new
    check-in time.  A check-out with nothing open is ignored.  A trailing
    check-in stays open.
    """
    entries = sorted(
        (log for log in logs if isinstance(log, dict) and isinstance(log.get("timestamp"), int)),
        key=lambda log: log["timestamp"],
    )

    sessions: List[SessionRecord] = []
    current: Optional[SessionRecord] = None

    for entry in entries:
        kind, ts = entry.get("type"), entry["timestamp"]

        if kind == CHECK_IN:
            if current is not None:
                sessions.append(current.model_copy(update={"end_time": ts, "updated_at": ts}))
            current = SessionRecord(
                id=str(uuid.uuid4()),
                device_id=device_id,
                start_time=ts,
                created_at=ts,
                updated_at=ts,
            )
        elif kind == CHECK_OUT and current is not None:
            sessions.append(current.model_copy(update={"end_time": ts, "updated_at": ts}))
            current = None

    if current is not None:
        sessions.append(current)

    return sessions
