"""Last-write-wins merge of remote sessions into the local set.

Per incoming session:

* unknown id → insert it;
* known id → replace only when ``incoming.updated_at > local.updated_at``.

Ties keep the local copy because it may be mid-edit.  Tombstones merge like
any other record so deletions propagate.
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field
from typing import Dict
from typing import Iterable
from typing import List

from timetrack.schemas.schemas import SessionRecord


@dataclass
class MergeResult:
    sessions: Dict[str, SessionRecord]
    inserted: List[str] = field(default_factory=list)
    replaced: List[str] = field(default_factory=list)
    kept: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.inserted or self.replaced)


def should_replace(local: SessionRecord, incoming: SessionRecord) -> bool:
    return incoming.updated_at > local.updated_at


def merge_sessions(local: Dict[str, SessionRecord], incoming: Iterable[SessionRecord]) -> MergeResult:
    """Return a new id → session mapping with *incoming* merged into *local*.

    *local* is not modified.
    """
    merged = dict(local)
    result = MergeResult(sessions=merged)

    for remote in incoming:
        current = merged.get(remote.id)
        if current is None:
            merged[remote.id] = remote
            result.inserted.append(remote.id)
        elif should_replace(current, remote):
            merged[remote.id] = remote
            result.replaced.append(remote.id)
        else:
            result.kept.append(remote.id)

    return result
