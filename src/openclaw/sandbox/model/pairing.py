"""Device pairing records shared with the gateway.

Pending requests are written by the gateway's pairing protocol; paired devices are written
by approval. Both files are mappings of id to record.

Only the device id decides whether a record is usable. Descriptive fields of the wrong
type are read as absent, and role and scope lists may contain junk that the approval
engine filters out, so that an odd field never blocks a pairing.
"""
from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator

from openclaw.sandbox.model.base import Base


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class DeviceDescription(Base):
    """Fields a pending request hands over to the paired device."""

    public_key: Optional[str] = None
    display_name: Optional[str] = None
    platform: Optional[str] = None
    client_id: Optional[str] = None
    client_mode: Optional[str] = None
    role: Optional[str] = None
    roles: Optional[List[Any]] = None
    scopes: Optional[List[Any]] = None
    remote_ip: Optional[str] = None

    @field_validator(
        "public_key",
        "display_name",
        "platform",
        "client_id",
        "client_mode",
        "role",
        "remote_ip",
        mode="before",
    )
    @classmethod
    def text_or_none(cls, v: Any) -> Optional[str]:
        return v if isinstance(v, str) else None

    @field_validator("roles", "scopes", mode="before")
    @classmethod
    def list_or_none(cls, v: Any) -> Optional[List[Any]]:
        return v if isinstance(v, list) else None


class PendingRequest(DeviceDescription):
    """Unconfirmed device asking to be paired.

    Several requests may carry the same device id; the store does not prevent it.
    """

    request_id: str
    device_id: str = ""
    silent: Optional[bool] = None
    is_repair: Optional[bool] = None
    ts: Optional[float] = None

    @field_validator("device_id", mode="before")
    @classmethod
    def device_id_as_text(cls, v: Any) -> Any:
        if v is None:
            return ""
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("silent", "is_repair", mode="before")
    @classmethod
    def flag_or_none(cls, v: Any) -> Optional[bool]:
        return v if isinstance(v, bool) else None

    @field_validator("ts", mode="before")
    @classmethod
    def number_or_none(cls, v: Any) -> Optional[float]:
        return v if _is_number(v) else None


class DeviceToken(Base):
    """Capability token for a single role of a paired device."""

    token: str
    role: str
    scopes: List[str] = Field(default_factory=list)
    created_at_ms: int
    rotated_at_ms: Optional[int] = None
    revoked_at_ms: Optional[int] = None
    last_used_at_ms: Optional[int] = None


class PairedDevice(DeviceDescription):
    """Confirmed device identity with one token per approved role."""

    device_id: str
    tokens: Optional[Dict[str, DeviceToken]] = None
    created_at_ms: Optional[int] = None
    approved_at_ms: Optional[int] = None

    @field_validator("created_at_ms", "approved_at_ms", mode="before")
    @classmethod
    def millis_or_none(cls, v: Any) -> Optional[int]:
        return int(v) if _is_number(v) else None


class DeviceIdentity(Base):
    """The node's own identity record. Only the device id is read."""

    device_id: Optional[str] = None
