"""Approval of pairing requests directly against the state directory, without the gateway."""

import logging
from typing import Any, Dict, List, NamedTuple, Optional

from openclaw.sandbox.pairing.approval import (
    ApprovalResult,
    RequestNotFound,
    approve_pairing,
    select_latest_request,
)
from openclaw.sandbox.store import PairingStore

logger = logging.getLogger(__name__)


class PendingSummary(NamedTuple):
    request_id: str
    device_id: str
    role: str
    ts: Optional[int]


def approve_local(
    store: PairingStore,
    request_id: Optional[str] = None,
    lock_timeout: Optional[float] = None,
) -> ApprovalResult:
    """
    Approve a pending request and persist the result.

    Args:
        store: The pairing documents to update
        request_id: The request to approve, defaults to the most recent pending request
        lock_timeout: Seconds to wait for the pairing lock, None waits indefinitely

    Raises:
        RequestNotFound: If nothing is pending or `request_id` is not pending
        InvalidRequest: If the request is malformed
        LockTimeout: If another writer holds the pairing lock past `lock_timeout`
        OSError: If the documents cannot be written
    """
    with store.locked(timeout=lock_timeout):
        pending = store.load_pending()
        paired = store.load_paired()

        if request_id is None:
            request_id = select_latest_request(pending)
            if request_id is None:
                raise RequestNotFound(
                    f"no pending pairing requests found at {store.pending_path}"
                )

        result = approve_pairing(pending, paired, request_id)
        store.ensure_directory()
        store.save(result.pending, result.paired)

    logger.debug(
        "approved device pairing requestId=%s deviceId=%s",
        result.request_id,
        result.device_id,
    )
    return result


def list_pending(store: PairingStore) -> List[PendingSummary]:
    """Pending requests, most recent first."""
    summaries = []
    for request_id, record in store.load_pending().items():
        if not isinstance(record, dict):
            record = {}
        summaries.append(
            PendingSummary(
                request_id=request_id,
                device_id=_text(record.get("deviceId")),
                role=_text(record.get("role")),
                ts=_timestamp(record.get("ts")),
            )
        )
    summaries.sort(key=lambda s: s.ts or 0, reverse=True)
    return summaries


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _timestamp(value: Any) -> Optional[int]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value)
    return None
