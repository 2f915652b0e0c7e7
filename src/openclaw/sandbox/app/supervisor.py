"""
Process Supervisor

Starts the background tasks, runs the gateway as a child process and tears everything down
on exit. This is the container's long-running entry point:

    openclaw-sandbox -- node dist/index.js gateway --bind lan

SIGTERM and SIGINT are forwarded to the gateway; once it exits (or, without a gateway
command, once a signal arrives) the background tasks are cancelled and awaited.
"""

import asyncio
import contextlib
import logging
import signal
from typing import AsyncIterator, Dict, List, Optional

from openclaw.sandbox.app.config import Settings
from openclaw.sandbox.app.metrics import MetricsClient, create_metrics_client
from openclaw.sandbox.app.tasks import CredentialSyncDaemon, SelfApprovalDaemon
from openclaw.sandbox.credentials.codex import CodexAuthSync
from openclaw.sandbox.store import PairingStore

logger = logging.getLogger(__name__)

HANDLED_SIGNALS = (signal.SIGTERM, signal.SIGINT)


def build_self_approval_daemon(
    settings: Settings, metrics_client: MetricsClient
) -> SelfApprovalDaemon:
    return SelfApprovalDaemon(
        PairingStore(settings.devices_dir, use_lock=settings.pairing_lock),
        settings.identity_path,
        metrics_client,
        poll_interval=settings.pairing_poll_interval,
        timeout=settings.pairing_timeout,
    )


def build_credential_sync_daemon(
    settings: Settings, metrics_client: MetricsClient
) -> CredentialSyncDaemon:
    return CredentialSyncDaemon(
        CodexAuthSync(settings.codex_auth_path, settings.auth_store_path),
        metrics_client,
        poll_interval=settings.auth_poll_interval,
        debounce=settings.auth_debounce,
    )


@contextlib.asynccontextmanager
async def background_tasks(
    settings: Settings,
    metrics_client: MetricsClient,
    auth_sync: bool = True,
    self_approve: bool = True,
) -> AsyncIterator[Dict[str, asyncio.Task]]:
    """Run the enabled background tasks for the duration of the context."""
    tasks: Dict[str, asyncio.Task] = {}

    if auth_sync:
        daemon = build_credential_sync_daemon(settings, metrics_client)
        tasks["auth_sync"] = asyncio.create_task(daemon.run(), name="auth_sync")
    if self_approve:
        daemon = build_self_approval_daemon(settings, metrics_client)
        tasks["self_approve"] = asyncio.create_task(daemon.run(), name="self_approve")

    try:
        yield tasks
    finally:
        logger.info("Shutting down background tasks")

        for task in tasks.values():
            task.cancel()

        for task in tasks.values():
            with contextlib.suppress(asyncio.CancelledError):
                await task


async def run_supervisor(
    settings: Settings,
    command: Optional[List[str]] = None,
    auth_sync: bool = True,
    self_approve: bool = True,
    metrics_client: Optional[MetricsClient] = None,
) -> int:
    """
    Run the background tasks alongside the gateway command.

    Args:
        settings: Application settings
        command: Gateway argv; without one the supervisor runs until signalled
        auth_sync: Start the credential sync task
        self_approve: Start the self pairing approval task
        metrics_client: Overrides the client built from the settings

    Returns:
        The gateway's exit code, or 0 when there is no gateway command
    """
    if metrics_client is None:
        metrics_client = create_metrics_client(
            settings.metrics_backend,
            host=settings.statsd_host,
            port=settings.statsd_port,
            debug=settings.debug,
        )
    await metrics_client.connect()

    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    gateway: Optional[asyncio.subprocess.Process] = None
    received: List[int] = []

    def on_signal(signum: int) -> None:
        logger.info("received %s", signal.Signals(signum).name)
        received.append(signum)
        stop.set()
        if gateway is not None and gateway.returncode is None:
            gateway.send_signal(signum)

    for signum in HANDLED_SIGNALS:
        loop.add_signal_handler(signum, on_signal, signum)

    try:
        async with background_tasks(settings, metrics_client, auth_sync, self_approve):
            if not command:
                await stop.wait()
                return 0

            if stop.is_set():
                logger.info("stopped before the gateway was started")
                return 0

            logger.info("starting gateway: %s", command[0])
            gateway = await asyncio.create_subprocess_exec(*command)
            if received:
                # Signalled while the gateway was being started.
                gateway.send_signal(received[-1])

            returncode = await gateway.wait()
            logger.info("gateway exited with %d", returncode)
            if returncode < 0:
                # Terminated by a signal, report it the way a shell would.
                return 128 - returncode
            return returncode
    finally:
        for signum in HANDLED_SIGNALS:
            loop.remove_signal_handler(signum)
        await metrics_client.close()
