"""Durable queue of mutations not yet confirmed by the remote service."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from dataclasses import field
from typing import Any
from typing import Callable
from typing import Dict
from typing import List
from typing import Optional
from typing import Protocol
from typing import Sequence

from pydantic import ValidationError

from timetrack.client.storage import LocalStorage
from timetrack.constants import MAX_OPERATION_RETRIES
from timetrack.constants import PENDING_OPERATIONS_KEY
from timetrack.metrics import operations_dropped_total
from timetrack.metrics import operations_enqueued_total
from timetrack.models.enums import OperationType
from timetrack.schemas.operations import Operation
from timetrack.schemas.operations import OperationAdapter
from timetrack.schemas.operations import build_operation
from timetrack.schemas.schemas import SyncResponse
from timetrack.utils.log import log
from timetrack.utils.time import now_ms


class BatchTransport(Protocol):
    async def sync_operations(self, user_code: str, operations: Sequence[Operation]) -> SyncResponse: ...


@dataclass
class DrainResult:
    succeeded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    dropped: List[Operation] = field(default_factory=list)
    timestamp: Optional[int] = None


class OperationQueue:
    """Ordered, persisted list of pending operations.

    ``on_enqueue`` is invoked after every successful enqueue; the sync engine
    uses it to schedule an immediate flush.
    """

    def __init__(
        self,
        storage: LocalStorage,
        *,
        on_enqueue: Callable[[Operation], None] | None = None,
        max_retries: int = MAX_OPERATION_RETRIES,
    ):
        self._storage = storage
        self._on_enqueue = on_enqueue
        self._max_retries = max_retries
        self._operations: List[Operation] = self._load()

    def _load(self) -> List[Operation]:
        operations: List[Operation] = []
        for raw in self._storage.get(PENDING_OPERATIONS_KEY) or []:
            try:
                operations.append(OperationAdapter.validate_python(raw))
            except ValidationError as exc:
                log.warning("queued-operation-discarded", error=str(exc.errors()[:1]))
        return operations

    def _persist(self) -> None:
        self._storage.set(PENDING_OPERATIONS_KEY, [op.to_wire() for op in self._operations])

    @property
    def pending(self) -> List[Operation]:
        return list(self._operations)

    def __len__(self) -> int:
        return len(self._operations)

    def enqueue(self, op_type: OperationType | str, session_id: str, data: Dict[str, Any] | None = None) -> str:
        operation = build_operation(
            op_type,
            operation_id=str(uuid.uuid4()),
            session_id=session_id,
            data=data,
            timestamp=now_ms(),
        )
        self._operations.append(operation)
        self._persist()

        operations_enqueued_total.labels(operation.type).inc()
        log.info("operation-enqueued", operation_id=operation.id, type=operation.type, session_id=session_id)

        if self._on_enqueue is not None:
            self._on_enqueue(operation)
        return operation.id

    async def drain(self, transport: BatchTransport, user_code: str) -> DrainResult:
        """Send the whole queue in one batch and apply the per-operation results.

        A failing batch call propagates (``TransportError``) and leaves every
        retry counter as it was.
        """
        if not self._operations:
            return DrainResult()

        batch = list(self._operations)
        response = await transport.sync_operations(user_code, batch)

        outcome: Dict[str, bool] = {}
        for item in response.results:
            if item.operationId is not None:
                outcome[item.operationId] = item.success
                if not item.success:
                    log.info("operation-failed-remotely", operation_id=item.operationId, error=item.error)

        result = DrainResult(timestamp=response.timestamp)
        sent_ids = {op.id for op in batch}
        remaining: List[Operation] = []

        # Operations enqueued while the batch was in flight are kept as-is.
        for op in self._operations:
            if op.id not in sent_ids or op.id not in outcome:
                remaining.append(op)
                continue

            if outcome[op.id]:
                result.succeeded.append(op.id)
                continue

            retried = op.model_copy(update={"retries": op.retries + 1})
            if retried.retries >= self._max_retries:
                result.dropped.append(retried)
                operations_dropped_total.labels(op.type).inc()
                log.warning("operation-dropped", operation_id=op.id, type=op.type, retries=retried.retries)
            else:
                result.failed.append(op.id)
                remaining.append(retried)

        self._operations = remaining
        self._persist()
        return result
