import argparse
import logging
import sys
from typing import Dict, List, Optional

from openclaw.sandbox.app.cli import configure_logging, configure_sentry
from openclaw.sandbox.app.config import Settings
from openclaw.sandbox.pairing.approval import PairingError
from openclaw.sandbox.pairing.local import approve_local, list_pending
from openclaw.sandbox.store import PairingStore

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> Dict:
    parser = argparse.ArgumentParser(
        prog="openclaw-approve-pairing",
        description="Approve a pending device pairing request without going through the gateway.",
    )
    parser.add_argument(
        "request_id",
        nargs="?",
        help="The request to approve. Defaults to the most recent pending request.",
    )
    parser.add_argument(
        "--devices-dir",
        default=None,
        help="Directory holding pending.json and paired.json. Defaults to <state dir>/devices.",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="List pending requests instead of approving one.",
    )
    return vars(parser.parse_args(argv))


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    settings = Settings()  # type: ignore

    configure_logging(settings.debug)
    configure_sentry(settings)

    store = PairingStore(
        args.get("devices_dir") or settings.devices_dir, use_lock=settings.pairing_lock
    )

    if args.get("list"):
        for summary in list_pending(store):
            print(
                f"{summary.request_id}\tdeviceId={summary.device_id or '-'}"
                f"\trole={summary.role or '-'}\tts={summary.ts if summary.ts is not None else '-'}"
            )
        return 0

    request_id = args.get("request_id")
    if request_id is not None:
        request_id = request_id.strip() or None

    try:
        result = approve_local(store, request_id, lock_timeout=settings.pairing_lock_timeout)
    except (PairingError, OSError) as e:
        print(f"[fatal] {e}", file=sys.stderr)
        return 1

    print(
        f"[ok] approved device pairing requestId={result.request_id} "
        f"deviceId={result.device_id}"
    )
    return 0


def invoke() -> None:
    sys.exit(main())


if __name__ == "__main__":
    invoke()
