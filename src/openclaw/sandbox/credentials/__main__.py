import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from openclaw.sandbox.app.cli import configure_logging, configure_sentry
from openclaw.sandbox.app.config import Settings
from openclaw.sandbox.credentials.codex import CodexAuthSync

logger = logging.getLogger(__name__)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="openclaw-sync-auth",
        description="Mirror the Codex CLI credentials into the gateway's auth profile store.",
    )
    parser.add_argument(
        "--watch",
        action="store_true",
        help="Keep running and re-sync whenever the credential file changes.",
    )
    args = parser.parse_args(argv)

    settings = Settings()  # type: ignore
    configure_logging(settings.debug)

    configure_sentry(settings)

    if args.watch:
        from openclaw.sandbox.app.supervisor import run_supervisor

        return asyncio.run(run_supervisor(settings, None, self_approve=False))

    auth_sync = CodexAuthSync(settings.codex_auth_path, settings.auth_store_path)
    try:
        outcome = auth_sync.sync_once()
    except OSError:
        logger.exception("auth sync failed")
        return 0
    logger.debug("auth sync %s", outcome.value)
    return 0


def invoke() -> None:
    sys.exit(main())


if __name__ == "__main__":
    invoke()
