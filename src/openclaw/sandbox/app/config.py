"""
Configuration Module for the OpenClaw Sandbox Bootstrap

This module defines the configuration for the processes that run next to the gateway inside
the container: the credential sync task, the self-approval task and the manual tools. It
uses Pydantic settings so that every value can come from the environment.

Paths follow the gateway's state directory conventions. Only the state directory and the
external credential file need to be known; everything else is derived from the state
directory unless overridden explicitly:

    <state_dir>/agents/main/agent/auth-profiles.json   auth profile store
    <state_dir>/devices/pending.json                   pending pairing requests
    <state_dir>/devices/paired.json                    paired devices
    <state_dir>/identity/device.json                   this node's device identity

Settings are constructed once per process and passed to the components that need them.
"""

import logging
from pathlib import Path
from typing import Any, Optional

from pydantic import (
    AliasChoices,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = Path("/home/node/.openclaw")
DEFAULT_CODEX_AUTH_PATH = Path("/home/node/.codex/auth.json")


class Settings(BaseSettings):
    """
    Application settings for the sandbox bootstrap.

    Environment variables are mapped to fields case-insensitively. Path settings accept
    either their field name or the gateway's `OPENCLAW_*` variable names. Blank values are
    treated as unset.
    """

    debug: bool = False
    """
    Enable debug logging.
    Set with DEBUG=true environment variable.
    """

    sentry_dsn: Optional[str] = None
    """
    Sentry DSN for error reporting. Optional, no error reporting if not set.
    Set with SENTRY_DSN environment variable.
    """

    # State locations
    state_dir: Path = Field(
        DEFAULT_STATE_DIR,
        validation_alias=AliasChoices("state_dir", "openclaw_state_dir"),
    )
    """
    Root of the gateway's state directory.
    Set with OPENCLAW_STATE_DIR environment variable.
    """

    codex_auth_path: Path = DEFAULT_CODEX_AUTH_PATH
    """
    Host-mounted Codex CLI credential file that is mirrored into the auth store.
    Set with CODEX_AUTH_PATH environment variable.
    """

    agent_dir: Optional[Path] = Field(
        None, validation_alias=AliasChoices("agent_dir", "openclaw_agent_dir")
    )
    """
    Agent directory holding the auth profile store.
    Set with OPENCLAW_AGENT_DIR. Default: <state_dir>/agents/main/agent
    """

    auth_store_path: Optional[Path] = Field(
        None, validation_alias=AliasChoices("auth_store_path", "openclaw_auth_store_path")
    )
    """
    Auth profile store written by the credential sync.
    Set with OPENCLAW_AUTH_STORE_PATH. Default: <agent_dir>/auth-profiles.json
    """

    devices_dir: Optional[Path] = Field(
        None, validation_alias=AliasChoices("devices_dir", "openclaw_devices_dir")
    )
    """
    Directory of the pairing documents.
    Set with OPENCLAW_DEVICES_DIR. Default: <state_dir>/devices
    """

    identity_path: Optional[Path] = Field(
        None, validation_alias=AliasChoices("identity_path", "openclaw_identity_path")
    )
    """
    This node's device identity record.
    Set with OPENCLAW_IDENTITY_PATH. Default: <state_dir>/identity/device.json
    """

    # Background task timing
    pairing_poll_interval: float = 2.0
    """
    Seconds between self-approval polls.
    Set with PAIRING_POLL_INTERVAL environment variable.
    """

    pairing_timeout: float = 600.0
    """
    Seconds after start-up at which the self-approval task gives up.
    Set with PAIRING_TIMEOUT environment variable. Default: 600 (10 minutes)
    """

    auth_poll_interval: float = 5.0
    """
    Seconds between stat polls of the external credential file.
    Set with AUTH_POLL_INTERVAL environment variable.
    """

    auth_debounce: float = 0.5
    """
    Quiet period in seconds a changed credential file must stay unchanged before syncing.
    Set with AUTH_DEBOUNCE environment variable.
    """

    pairing_lock: bool = True
    """
    Serialize pairing read-modify-write cycles with an advisory lock file.
    Set with PAIRING_LOCK environment variable.
    """

    pairing_lock_timeout: float = 30.0
    """
    Seconds the manual approval tool waits for the pairing lock before giving up. The
    background task never waits; it retries on its next poll instead.
    Set with PAIRING_LOCK_TIMEOUT environment variable.
    """

    # Monitoring and observability settings
    metrics_backend: str = "none"
    """
    Metrics backend, 'telegraf' or 'none'.
    Set with METRICS_BACKEND environment variable.
    """

    statsd_host: str = Field(alias="TELEGRAF_HOST", default="telegraf")
    """
    StatsD/Telegraf host for metrics collection.
    Set with TELEGRAF_HOST environment variable.
    """

    statsd_port: int = Field(alias="TELEGRAF_PORT", default=8125)
    """
    StatsD/Telegraf port for metrics collection.
    Set with TELEGRAF_PORT environment variable.
    """

    @field_validator("state_dir", "codex_auth_path", mode="before")
    @classmethod
    def default_blank_path(cls, v: Any, info: ValidationInfo) -> Any:
        """Blank required paths fall back to their conventional location."""
        if isinstance(v, str):
            v = v.strip()
            if not v:
                if info.field_name == "state_dir":
                    return DEFAULT_STATE_DIR
                return DEFAULT_CODEX_AUTH_PATH
        return v

    @field_validator(
        "agent_dir", "auth_store_path", "devices_dir", "identity_path", mode="before"
    )
    @classmethod
    def blank_path_is_unset(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @model_validator(mode="after")
    def derive_paths(self) -> "Settings":
        """Fill in every path that was not overridden from the state directory."""
        if self.agent_dir is None:
            self.agent_dir = self.state_dir / "agents" / "main" / "agent"
        if self.auth_store_path is None:
            self.auth_store_path = self.agent_dir / "auth-profiles.json"
        if self.devices_dir is None:
            self.devices_dir = self.state_dir / "devices"
        if self.identity_path is None:
            self.identity_path = self.state_dir / "identity" / "device.json"
        return self
