"""
JSON Document Store

State shared with the gateway lives in small JSON documents that are always read and
written whole. This module provides the two primitives every component uses, plus the
pairing store that groups the pending and paired documents.

Reads never fail: a missing, unreadable or corrupt document is treated as "no state yet"
and the caller's default is returned.

Writes never expose a partial document: the new content goes to a uniquely named temporary
file in the destination directory (mode 0600), which is then renamed over the destination.
A reader sees either the old document or the new one. Creating the destination directory
is left to the caller.

The rename is atomic per file only. Approving a pairing request rewrites two documents, and
two writers doing read-modify-write cycles can still lose an update. Writers in this package
serialize those cycles with an advisory lock (see PairingStore.locked); the gateway itself
does not take that lock. Callers on an event loop must not block on it, so they pass a
timeout (0 for a single attempt) and treat LockTimeout as "try again later".
"""

import contextlib
import fcntl
import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, TypeVar, Union

from ulid import ULID

logger = logging.getLogger(__name__)

T = TypeVar("T")

PathLike = Union[str, os.PathLike]

FILE_MODE = 0o600
DIRECTORY_MODE = 0o700
LOCK_RETRY_INTERVAL = 0.05


class LockTimeout(TimeoutError):
    """The advisory pairing lock could not be taken in time."""


def load_json(path: PathLike, default: T) -> Union[Any, T]:
    """
    Read and parse the JSON document at `path`.

    Args:
        path: Document location
        default: Value returned when the document is absent, unreadable or not valid JSON

    Returns:
        The parsed document, or `default`
    """
    try:
        with open(path, encoding="utf-8") as fd:
            return json.load(fd)
    except (OSError, ValueError):
        return default


def save_json(path: PathLike, value: Any, mode: int = FILE_MODE) -> None:
    """
    Atomically replace the JSON document at `path`.

    The document is written with 2-space indentation and a trailing newline to a temporary
    sibling file named `<path>.<ULID>.tmp`, then renamed over `path`. Failures are raised
    to the caller after the temporary file is removed.

    Args:
        path: Destination; its directory must already exist
        value: JSON-serializable document
        mode: Permission bits for the written file
    """
    destination = Path(path)
    tmp = destination.with_name(f"{destination.name}.{ULID()}.tmp")
    payload = json.dumps(value, indent=2, ensure_ascii=False) + "\n"

    fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_EXCL, mode)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(payload)
            fh.flush()
            os.fsync(fh.fileno())
        try:
            os.chmod(tmp, mode)
        except OSError as e:
            logger.warning("chmod failed on temporary file %s: %s", tmp, e)
        os.replace(tmp, destination)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp)
        raise

    try:
        os.chmod(destination, mode)
    except OSError as e:
        logger.warning("chmod failed on %s: %s", destination, e)


def ensure_directory(path: PathLike, mode: int = DIRECTORY_MODE) -> None:
    """Create `path` (and parents) if missing, tightening its mode on a best-effort basis."""
    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True, mode=mode)
    try:
        os.chmod(directory, mode)
    except OSError as e:
        logger.debug("chmod failed on %s: %s", directory, e)


class PairingStore:
    """
    The pending and paired device documents of one gateway state directory.

    Both documents are mappings: request id to pending request, and device id to paired
    device. Records are returned as raw documents; parsing is left to the approval engine
    so that one malformed entry cannot hide the others.
    """

    PENDING_FILE = "pending.json"
    PAIRED_FILE = "paired.json"
    LOCK_FILE = ".pairing.lock"

    def __init__(self, devices_dir: PathLike, use_lock: bool = True):
        self.devices_dir = Path(devices_dir)
        self.pending_path = self.devices_dir / self.PENDING_FILE
        self.paired_path = self.devices_dir / self.PAIRED_FILE
        self.lock_path = self.devices_dir / self.LOCK_FILE
        self.use_lock = use_lock

    def load_pending(self) -> Dict[str, Any]:
        return _mapping_or_empty(load_json(self.pending_path, {}))

    def load_paired(self) -> Dict[str, Any]:
        return _mapping_or_empty(load_json(self.paired_path, {}))

    def ensure_directory(self) -> None:
        ensure_directory(self.devices_dir)

    def save(self, pending: Dict[str, Any], paired: Dict[str, Any]) -> None:
        """
        Persist both documents, paired first.

        A crash between the two renames leaves the device paired with its request still
        pending. Approving that request again only rotates the token, so the state heals on
        the next approval.
        """
        save_json(self.paired_path, paired)
        save_json(self.pending_path, pending)

    @contextlib.contextmanager
    def locked(self, timeout: Optional[float] = None) -> Iterator[None]:
        """
        Hold the advisory pairing lock for a read-modify-write cycle.

        A no-op when locking is disabled.

        Args:
            timeout: Seconds to wait for the lock. None waits indefinitely, 0 makes a
                single attempt.

        Raises:
            LockTimeout: If the lock is still held elsewhere when the timeout expires
        """
        if not self.use_lock:
            yield
            return

        self.ensure_directory()
        fd = os.open(self.lock_path, os.O_RDWR | os.O_CREAT, FILE_MODE)
        try:
            self._acquire(fd, timeout)
            try:
                yield
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)

    def _acquire(self, fd: int, timeout: Optional[float]) -> None:
        if timeout is None:
            fcntl.flock(fd, fcntl.LOCK_EX)
            return

        deadline = time.monotonic() + timeout
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                return
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    raise LockTimeout(
                        f"pairing lock {self.lock_path} still held after {timeout:.1f}s"
                    )
                time.sleep(LOCK_RETRY_INTERVAL)


def _mapping_or_empty(document: Any) -> Dict[str, Any]:
    if isinstance(document, dict):
        return document
    return {}
