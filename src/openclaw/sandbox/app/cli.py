import argparse
import asyncio
import json
import logging
import os
import sys
from logging.config import dictConfig
from typing import List, Optional

import sentry_sdk

from openclaw.sandbox.app.config import Settings


def configure_logging(debug: bool = False):
    logging_config_file = os.getenv("LOGGING_CONFIG_FILE", "")

    if len(logging_config_file) > 0:
        with open(logging_config_file) as fl:
            dictConfig(json.load(fl))
        return

    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s %(message)s")
    logging.getLogger().setLevel(logging.DEBUG if debug else logging.INFO)


def configure_sentry(settings: Settings):
    if settings.sentry_dsn:
        sentry_sdk.init(dsn=settings.sentry_dsn, send_default_pii=False)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="openclaw-sandbox",
        description="Run the credential sync and self pairing approval tasks next to the gateway.",
    )
    parser.add_argument(
        "--no-auth-sync",
        dest="auth_sync",
        action="store_false",
        help="Do not mirror the Codex credential file into the auth profile store.",
    )
    parser.add_argument(
        "--no-self-approve",
        dest="self_approve",
        action="store_false",
        help="Do not approve this node's own pairing request.",
    )
    parser.add_argument(
        "command",
        nargs=argparse.REMAINDER,
        help="Gateway command to run, after '--'.",
    )
    args = parser.parse_args(argv)
    if args.command and args.command[0] == "--":
        args.command = args.command[1:]
    return args


def invoke(argv: Optional[List[str]] = None):
    args = parse_args(argv)
    settings = Settings()  # type: ignore

    configure_logging(settings.debug)
    configure_sentry(settings)

    from openclaw.sandbox.app.supervisor import run_supervisor

    sys.exit(
        asyncio.run(
            run_supervisor(
                settings,
                args.command,
                auth_sync=args.auth_sync,
                self_approve=args.self_approve,
            )
        )
    )


if __name__ == "__main__":
    invoke()
