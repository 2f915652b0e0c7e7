"""
Device Pairing Approval

This module turns a pending pairing request into a paired device. It is shared by the
self-approval task that runs at container start and by the manual approval tool.

Approval does the following for the request's device id:
1. Merges the roles and scopes already granted to the device with the ones requested
2. Rotates the token of the requested role (a new random token, keeping the original
   creation time of that role's token if there was one)
3. Replaces the device's descriptive metadata with the request's
4. Removes the request from the pending collection and upserts the device into the paired
   collection

The engine is a pure function over the two collections. It performs no I/O, never mutates
its inputs and returns new collections, so the callers decide how and when to persist them.
"""

import re
import secrets
import time
from typing import Any, Dict, Iterable, List, NamedTuple, Optional

from pydantic import ValidationError

from openclaw.sandbox.model.pairing import DeviceToken, PairedDevice, PendingRequest

SAFE_ID_RE = re.compile(r"[A-Za-z0-9_\-:.]+")


class PairingError(ValueError):
    """Base error for pairing approval."""


class RequestNotFound(PairingError):
    """The request id is not in the pending collection."""


class InvalidRequest(PairingError):
    """The request (or the stored device it targets) is malformed or unsafe."""


class ApprovalResult(NamedTuple):
    request_id: str
    device_id: str
    pending: Dict[str, Any]
    paired: Dict[str, Any]
    device: PairedDevice


def is_valid_id(value: str) -> bool:
    return SAFE_ID_RE.fullmatch(value) is not None


def uniq_sorted_strings(items: Iterable[Any]) -> List[str]:
    """Trim, drop blanks and non-strings, deduplicate and sort."""
    seen = set()
    for item in items:
        if not isinstance(item, str):
            continue
        trimmed = item.strip()
        if trimmed:
            seen.add(trimmed)
    return sorted(seen)


def merge_roles(
    existing: Optional[PairedDevice], request: PendingRequest
) -> Optional[List[str]]:
    """Union of every role recorded on the device and the request; None when there are none."""
    merged: List[Any] = []
    if existing is not None:
        merged.extend(existing.roles or [])
        if existing.role:
            merged.append(existing.role)
    merged.extend(request.roles or [])
    if request.role:
        merged.append(request.role)

    roles = uniq_sorted_strings(merged)
    return roles or None


def merge_scopes(existing: Optional[PairedDevice], request: PendingRequest) -> List[str]:
    merged: List[Any] = []
    if existing is not None:
        merged.extend(existing.scopes or [])
    merged.extend(request.scopes or [])
    return uniq_sorted_strings(merged)


def new_token() -> str:
    """32 random bytes, URL-safe base64 without padding."""
    return secrets.token_urlsafe(32)


def now_millis() -> int:
    return int(time.time() * 1000)


def select_latest_request(pending: Dict[str, Any]) -> Optional[str]:
    """
    Return the id of the most recent pending request, by its `ts` field.

    Requests without a numeric timestamp sort as the oldest. Ties keep document order.
    """

    def request_ts(request_id: str) -> float:
        record = pending.get(request_id)
        ts = record.get("ts") if isinstance(record, dict) else None
        if isinstance(ts, (int, float)) and not isinstance(ts, bool):
            return float(ts)
        return 0.0

    ordered = sorted(pending.keys(), key=request_ts, reverse=True)
    return ordered[0] if ordered else None


def _rotate_token(
    tokens: Dict[str, DeviceToken], role: str, scopes: List[str], now_ms: int
) -> DeviceToken:
    previous = tokens.get(role)
    return DeviceToken(
        token=new_token(),
        role=role,
        scopes=scopes,
        created_at_ms=previous.created_at_ms if previous is not None else now_ms,
        rotated_at_ms=now_ms if previous is not None else None,
        revoked_at_ms=None,
        last_used_at_ms=previous.last_used_at_ms if previous is not None else None,
    )


def approve_pairing(
    pending: Dict[str, Any],
    paired: Dict[str, Any],
    request_id: str,
    now_ms: Optional[int] = None,
) -> ApprovalResult:
    """
    Approve the pending request `request_id`.

    Args:
        pending: Request id to pending request document
        paired: Device id to paired device document
        request_id: The request to approve
        now_ms: Approval time in epoch milliseconds, defaults to the current time

    Returns:
        ApprovalResult: The request and device ids, the new pending and paired collections
        (documents) and the approved device

    Raises:
        RequestNotFound: If `request_id` is not pending
        InvalidRequest: If the device id is blank, the device id or role contains unsafe
            characters, the request is not an object, or the stored device record has
            malformed tokens
    """
    raw_request = pending.get(request_id)
    if raw_request is None:
        raise RequestNotFound(f"requestId not found in pending: {request_id}")

    try:
        request = PendingRequest.model_validate(
            {**raw_request, "requestId": request_id}
            if isinstance(raw_request, dict)
            else raw_request
        )
    except ValidationError as e:
        raise InvalidRequest(f"malformed pending request (requestId={request_id})") from e

    device_id = request.device_id.strip()
    if not device_id:
        raise InvalidRequest(f"pending request missing deviceId (requestId={request_id})")
    if not is_valid_id(device_id):
        raise InvalidRequest(f"invalid deviceId format (requestId={request_id})")

    role_for_token = (request.role or "").strip()
    if role_for_token and not is_valid_id(role_for_token):
        raise InvalidRequest(f"invalid role format (requestId={request_id})")

    existing: Optional[PairedDevice] = None
    raw_existing = paired.get(device_id)
    if isinstance(raw_existing, dict):
        try:
            existing = PairedDevice.model_validate({**raw_existing, "deviceId": device_id})
        except ValidationError as e:
            raise InvalidRequest(f"malformed paired device record (deviceId={device_id})") from e

    if now_ms is None:
        now_ms = now_millis()

    tokens: Dict[str, DeviceToken] = dict(existing.tokens or {}) if existing else {}
    if role_for_token:
        tokens[role_for_token] = _rotate_token(
            tokens, role_for_token, uniq_sorted_strings(request.scopes or []), now_ms
        )

    device = PairedDevice(
        device_id=device_id,
        public_key=request.public_key,
        display_name=request.display_name,
        platform=request.platform,
        client_id=request.client_id,
        client_mode=request.client_mode,
        role=request.role,
        roles=merge_roles(existing, request),
        scopes=merge_scopes(existing, request),
        remote_ip=request.remote_ip,
        tokens=tokens,
        created_at_ms=(
            existing.created_at_ms
            if existing is not None and existing.created_at_ms is not None
            else now_ms
        ),
        approved_at_ms=now_ms,
    )

    updated_pending = {k: v for k, v in pending.items() if k != request_id}
    updated_paired = dict(paired)
    updated_paired[device_id] = device.to_document()

    return ApprovalResult(request_id, device_id, updated_pending, updated_paired, device)
