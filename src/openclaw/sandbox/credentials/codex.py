"""Mirror the Codex CLI OAuth credentials into the gateway's auth profile store.

The Codex CLI keeps its tokens in `auth.json`, which is bind-mounted read-only from the
host. The gateway reads OAuth credentials from its own `auth-profiles.json`. One sync cycle
converts the former into an `openai-codex:default` profile in the latter, writing only when
the profile actually changed.
"""

import logging
import os
import time
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional, Union

from openclaw.sandbox.model.auth_profile import (
    CODEX_PROFILE_ID,
    CODEX_PROVIDER,
    AuthProfile,
    AuthStore,
)
from openclaw.sandbox.store import ensure_directory, load_json, save_json

logger = logging.getLogger(__name__)

ACCESS_TOKEN_LIFETIME = timedelta(hours=1)


class SyncOutcome(Enum):
    SYNCED = "synced"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"


def parse_last_refresh(value: Any) -> Optional[int]:
    """Parse an ISO-8601 timestamp to epoch milliseconds. Naive timestamps are UTC."""
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def build_profile(codex: Any, now_ms: int) -> Optional[AuthProfile]:
    """
    Derive the auth profile from a parsed Codex `auth.json` document.

    The access token is assumed to live one hour from the last refresh recorded by the
    Codex CLI, or from now when that timestamp is missing or unparseable. In the latter
    case the expiry moves with the clock, so every sync writes the store again; syncs are
    only idempotent when `last_refresh` is present.

    Returns:
        The profile, or None when the access or refresh token is missing
    """
    if not isinstance(codex, dict):
        return None

    tokens = codex.get("tokens")
    if not isinstance(tokens, dict):
        tokens = {}

    access = tokens.get("access_token")
    access = access.strip() if isinstance(access, str) else ""
    refresh = tokens.get("refresh_token")
    refresh = refresh.strip() if isinstance(refresh, str) else ""
    if not access or not refresh:
        return None

    lifetime_ms = int(ACCESS_TOKEN_LIFETIME.total_seconds() * 1000)
    last_refresh_ms = parse_last_refresh(codex.get("last_refresh"))
    expires = (last_refresh_ms if last_refresh_ms is not None else now_ms) + lifetime_ms

    account_id = tokens.get("account_id")

    return AuthProfile(
        type="oauth",
        provider=CODEX_PROVIDER,
        access=access,
        refresh=refresh,
        expires=expires,
        account_id=account_id if isinstance(account_id, str) else None,
    )


class CodexAuthSync:
    """
    One-directional sync from the Codex credential file to a profile in the auth store.

    The store's version and every other profile are preserved.
    """

    def __init__(
        self,
        source_path: Union[str, os.PathLike],
        store_path: Union[str, os.PathLike],
        profile_id: str = CODEX_PROFILE_ID,
        clock: Callable[[], float] = time.time,
    ):
        self.source_path = Path(source_path)
        self.store_path = Path(store_path)
        self.profile_id = profile_id
        self.clock = clock

    def sync_once(self) -> SyncOutcome:
        """
        Run one sync cycle.

        Returns:
            SKIPPED when the source is unreadable or incomplete, UNCHANGED when the stored
            profile already matches, SYNCED after writing the store

        Raises:
            OSError: If the store cannot be written
        """
        codex = load_json(self.source_path, None)
        if not isinstance(codex, dict):
            logger.warning("codex auth not readable or invalid: %s", self.source_path)
            return SyncOutcome.SKIPPED

        now_ms = int(self.clock() * 1000)
        profile = build_profile(codex, now_ms)
        if profile is None:
            logger.warning("codex auth missing access/refresh token; skipping")
            return SyncOutcome.SKIPPED

        store = AuthStore.from_document(load_json(self.store_path, None))
        if profile.same_credentials(store.get_profile(self.profile_id)):
            logger.debug("%s already up to date", self.profile_id)
            return SyncOutcome.UNCHANGED

        ensure_directory(self.store_path.parent)
        save_json(self.store_path, store.with_profile(self.profile_id, profile).to_document())
        logger.info("synced %s from %s", self.profile_id, self.source_path)
        return SyncOutcome.SYNCED
