"""
Background Tasks

Two long-running tasks are started next to the gateway when the container boots:

- SelfApprovalDaemon: Approves this node's own pending pairing request. The gateway rejects
  tool connections until a device is paired, but pairing approval normally goes through the
  gateway, so the first pairing has to be approved locally. Only a request whose device id
  matches this node's identity is ever approved, and the task gives up after a deadline.
- CredentialSyncDaemon: Keeps the gateway's auth profile store in sync with the host's Codex
  credential file for the lifetime of the container.

Each task is a single sequential loop. Failures inside a cycle are reported and the loop
carries on with the next tick; nothing escapes the task except cancellation.
"""

import asyncio
import logging
import os
import time
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, NoReturn, Optional, Set, Tuple, Union

import sentry_sdk
from pydantic import ValidationError

from openclaw.sandbox.app.metrics import MetricsClient
from openclaw.sandbox.credentials.codex import CodexAuthSync, SyncOutcome
from openclaw.sandbox.model.pairing import DeviceIdentity
from openclaw.sandbox.pairing.approval import InvalidRequest, PairingError, approve_pairing
from openclaw.sandbox.store import LockTimeout, PairingStore, load_json

logger = logging.getLogger(__name__)

FileSignature = Optional[Tuple[int, int, int]]


class PairingState(Enum):
    WAITING = "waiting"
    DONE = "done"


def read_own_device_id(identity_path: Union[str, os.PathLike]) -> str:
    """Device id from the identity record, or an empty string if there is none."""
    document = load_json(identity_path, None)
    if not isinstance(document, dict):
        return ""
    try:
        identity = DeviceIdentity.model_validate(document)
    except ValidationError:
        return ""
    return (identity.device_id or "").strip()


def find_requests_for_device(pending: Dict[str, Any], device_id: str) -> List[str]:
    """Pending request ids, in document order, whose device id is `device_id`."""
    matches = []
    for request_id, record in pending.items():
        if not isinstance(record, dict):
            continue
        candidate = record.get("deviceId")
        if isinstance(candidate, str) and candidate.strip() == device_id:
            matches.append(request_id)
    return matches


class SelfApprovalDaemon:
    """
    Waits for this node's own pairing request and approves it.

    The daemon is in one of two states. It starts WAITING and becomes DONE once its device
    is paired, or immediately when the node has no identity. If the deadline passes while
    still WAITING it stops without error.

    When the node has several pending requests, the first one that can be approved wins.
    A request that cannot be approved is reported once and then skipped quietly.
    """

    def __init__(
        self,
        pairing_store: PairingStore,
        identity_path: Union[str, os.PathLike],
        metrics_client: MetricsClient,
        poll_interval: float = 2.0,
        timeout: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.pairing_store = pairing_store
        self.identity_path = Path(identity_path)
        self.metrics_client = metrics_client
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.clock = clock
        self.rejected: Set[str] = set()

    def poll(self) -> PairingState:
        """
        Run one tick of the state machine.

        The pairing lock is only tried, never waited for: while another writer holds it
        the tick ends WAITING.

        Raises:
            OSError: If the pairing documents cannot be written
        """
        device_id = read_own_device_id(self.identity_path)
        if not device_id:
            logger.info("no device identity at %s; nothing to approve", self.identity_path)
            return PairingState.DONE

        try:
            with self.pairing_store.locked(timeout=0):
                paired = self.pairing_store.load_paired()
                if device_id in paired:
                    logger.debug("deviceId=%s already paired", device_id)
                    return PairingState.DONE

                request_id = self._approve_own_request(device_id, paired)
        except LockTimeout:
            logger.debug("pairing lock busy; retrying next tick")
            return PairingState.WAITING

        if request_id is None:
            return PairingState.WAITING

        logger.info(
            "auto-approved self deviceId=%s requestId=%s", device_id, request_id
        )
        self.metrics_client.increment("openclaw.pairing.approved", 1)
        return PairingState.DONE

    def _approve_own_request(self, device_id: str, paired: Dict[str, Any]) -> Optional[str]:
        """
        Approve and persist the first acceptable pending request for `device_id`.

        Must be called with the pairing lock held.

        Returns:
            The approved request id, or None when no request could be approved
        """
        pending = self.pairing_store.load_pending()
        for request_id in find_requests_for_device(pending, device_id):
            try:
                result = approve_pairing(pending, paired, request_id)
            except InvalidRequest as e:
                self._report_rejected(request_id, e)
                continue

            if result.device_id != device_id:
                raise InvalidRequest(
                    f"refusing to approve foreign deviceId (requestId={request_id})"
                )

            self.pairing_store.ensure_directory()
            self.pairing_store.save(result.pending, result.paired)
            return request_id

        return None

    def _report_rejected(self, request_id: str, error: InvalidRequest) -> None:
        if request_id in self.rejected:
            return
        self.rejected.add(request_id)

        sentry_sdk.capture_exception(error)
        logger.warning("skipping self pairing request: %s", error)
        self.metrics_client.increment(
            "openclaw.pairing.exception",
            1,
            tag_dict={"exception": type(error).__name__},
        )

    async def run(self) -> PairingState:
        """Poll until DONE or until the deadline passes. Returns the final state."""
        logger.info("Starting self pairing approval task")

        end_at = self.clock() + self.timeout
        while self.clock() < end_at:
            try:
                if self.poll() is PairingState.DONE:
                    return PairingState.DONE
            except PairingError as e:
                sentry_sdk.capture_exception(e)
                logger.warning("self pairing request rejected: %s", e)
                self.metrics_client.increment(
                    "openclaw.pairing.exception",
                    1,
                    tag_dict={"exception": type(e).__name__},
                )
            except Exception as e:
                sentry_sdk.capture_exception(e)
                logger.exception("self pairing approval tick failed")
                self.metrics_client.increment(
                    "openclaw.pairing.exception",
                    1,
                    tag_dict={"exception": type(e).__name__},
                )

            await asyncio.sleep(self.poll_interval)

        logger.warning(
            "self pairing request not approved within %.0f seconds; giving up",
            self.timeout,
        )
        self.metrics_client.increment("openclaw.pairing.timeout", 1)
        return PairingState.WAITING


def file_signature(path: Union[str, os.PathLike]) -> FileSignature:
    """Identity of the file's current content as seen by stat, None when it is missing."""
    try:
        stat = os.stat(path)
    except OSError:
        return None
    return (stat.st_ino, stat.st_size, stat.st_mtime_ns)


class CredentialSyncDaemon:
    """
    Watches the Codex credential file and re-runs the sync when it changes.

    The watch is stat polling rather than inotify: host bind mounts (Docker Desktop's
    VirtioFS in particular) do not reliably deliver change events into the container.
    A detected change is synced once the file has been quiet for the debounce period.
    """

    def __init__(
        self,
        auth_sync: CodexAuthSync,
        metrics_client: MetricsClient,
        poll_interval: float = 5.0,
        debounce: float = 0.5,
    ):
        self.auth_sync = auth_sync
        self.metrics_client = metrics_client
        self.poll_interval = poll_interval
        self.debounce = debounce

    def run_cycle(self) -> Optional[SyncOutcome]:
        """Run one sync, reporting instead of raising. Returns None when the cycle failed."""
        start_time = time.time()
        try:
            outcome = self.auth_sync.sync_once()
            self.metrics_client.increment(f"openclaw.auth_sync.{outcome.value}", 1)
            return outcome
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.exception("auth sync failed")
            self.metrics_client.increment(
                "openclaw.auth_sync.exception",
                1,
                tag_dict={"exception": type(e).__name__},
            )
            return None
        finally:
            self.metrics_client.timer("openclaw.auth_sync.time", time.time() - start_time)

    async def wait_for_quiet(self, signature: FileSignature) -> FileSignature:
        """Sleep until the file's signature holds steady for one debounce period."""
        while True:
            await asyncio.sleep(self.debounce)
            latest = file_signature(self.auth_sync.source_path)
            if latest == signature:
                return latest
            signature = latest

    async def run(self) -> NoReturn:
        source_path = self.auth_sync.source_path
        last_seen = file_signature(source_path)
        self.run_cycle()

        logger.info("watching %s (poll %.1fs)", source_path, self.poll_interval)

        while True:
            await asyncio.sleep(self.poll_interval)

            current = file_signature(source_path)
            if current == last_seen:
                continue

            last_seen = await self.wait_for_quiet(current)
            self.run_cycle()
