"""
Unit tests for the self pairing approval task.

Tests cover approving this node's own request (and nothing else), the no-identity and
already-paired exits, the deadline, cancellation, and error containment inside the loop.
"""

import asyncio
from unittest.mock import patch

import pytest

from openclaw.sandbox.app.tasks import (
    PairingState,
    SelfApprovalDaemon,
    find_requests_for_device,
    read_own_device_id,
)
from openclaw.sandbox.store import PairingStore
from tests.test_helpers import pending_request, read_json, write_json


@pytest.fixture
def identity(identity_path):
    write_json(identity_path, {"deviceId": "dev-A", "publicKeyPem": "---"})
    return "dev-A"


@pytest.fixture
def daemon(pairing_store, identity_path, mock_metrics):
    return SelfApprovalDaemon(
        pairing_store,
        identity_path,
        mock_metrics,
        poll_interval=0.01,
        timeout=0.2,
    )


class TestReadOwnDeviceId:
    def test_present(self, identity_path):
        write_json(identity_path, {"deviceId": " dev-A "})
        assert read_own_device_id(identity_path) == "dev-A"

    @pytest.mark.parametrize("document", [{}, {"deviceId": 5}, [], {"deviceId": ""}])
    def test_unusable_documents(self, identity_path, document):
        write_json(identity_path, document)
        assert read_own_device_id(identity_path) == ""

    def test_missing(self, identity_path):
        assert read_own_device_id(identity_path) == ""


class TestFindRequestsForDevice:
    def test_matches_in_document_order(self):
        pending = {
            "r1": pending_request("dev-B"),
            "r2": pending_request("dev-A"),
            "r3": pending_request("dev-A"),
        }
        assert find_requests_for_device(pending, "dev-A") == ["r2", "r3"]

    def test_ignores_malformed_records(self):
        pending = {"r1": "dev-A", "r2": {"deviceId": None}, "r3": pending_request(" dev-A ")}
        assert find_requests_for_device(pending, "dev-A") == ["r3"]

    def test_no_match(self):
        assert find_requests_for_device({"r1": pending_request("dev-B")}, "dev-A") == []


class TestPoll:
    """Test a single tick of the self-approval state machine."""

    def test_no_identity_is_done(self, daemon, pairing_store):
        assert daemon.poll() is PairingState.DONE
        assert not pairing_store.paired_path.exists()

    def test_approves_own_request(self, daemon, pairing_store, identity, mock_metrics):
        write_json(
            pairing_store.pending_path,
            {"r1": pending_request("dev-A", role="operator", scopes=["chat"])},
        )

        assert daemon.poll() is PairingState.DONE

        assert read_json(pairing_store.pending_path) == {}
        device = read_json(pairing_store.paired_path)["dev-A"]
        assert device["roles"] == ["operator"]
        assert list(device["tokens"]) == ["operator"]
        assert mock_metrics.count("openclaw.pairing.approved") == 1

    def test_ignores_foreign_requests(self, daemon, pairing_store, identity, mock_metrics):
        pending = {"r1": pending_request("dev-B", role="operator")}
        write_json(pairing_store.pending_path, pending)

        assert daemon.poll() is PairingState.WAITING

        assert read_json(pairing_store.pending_path) == pending
        assert not pairing_store.paired_path.exists()
        assert mock_metrics.count("openclaw.pairing.approved") == 0

    def test_only_own_request_is_consumed(self, daemon, pairing_store, identity):
        write_json(
            pairing_store.pending_path,
            {
                "r1": pending_request("dev-B", role="operator"),
                "r2": pending_request("dev-A", role="operator"),
            },
        )

        daemon.poll()

        assert list(read_json(pairing_store.pending_path)) == ["r1"]
        assert list(read_json(pairing_store.paired_path)) == ["dev-A"]

    def test_already_paired_is_done(self, daemon, pairing_store, identity):
        paired = {"dev-A": {"deviceId": "dev-A", "approvedAtMs": 1}}
        pending = {"r1": pending_request("dev-A", role="operator")}
        write_json(pairing_store.paired_path, paired)
        write_json(pairing_store.pending_path, pending)

        assert daemon.poll() is PairingState.DONE

        assert read_json(pairing_store.paired_path) == paired
        assert read_json(pairing_store.pending_path) == pending

    def test_nothing_pending_is_waiting(self, daemon, identity):
        assert daemon.poll() is PairingState.WAITING

    def test_busy_lock_is_waiting(self, daemon, devices_dir, pairing_store, identity):
        pending = {"r1": pending_request("dev-A", role="operator")}
        write_json(pairing_store.pending_path, pending)

        with PairingStore(devices_dir).locked():
            assert daemon.poll() is PairingState.WAITING

        assert read_json(pairing_store.pending_path) == pending
        assert daemon.poll() is PairingState.DONE

    def test_request_with_loose_fields_is_approved(self, daemon, pairing_store, identity):
        write_json(
            pairing_store.pending_path,
            {"r1": pending_request("dev-A", role="operator", roles=["operator", 7], ts=None)},
        )

        assert daemon.poll() is PairingState.DONE
        assert read_json(pairing_store.paired_path)["dev-A"]["roles"] == ["operator"]


class TestRun:
    """Test the polling loop."""

    async def test_no_identity_exits_immediately(self, daemon, mock_metrics):
        assert await daemon.run() is PairingState.DONE
        assert mock_metrics.count("openclaw.pairing.timeout") == 0

    async def test_times_out(self, daemon, identity, mock_metrics):
        assert await daemon.run() is PairingState.WAITING
        assert mock_metrics.count("openclaw.pairing.timeout") == 1

    async def test_zero_timeout_never_polls(self, pairing_store, identity_path, identity, mock_metrics):
        write_json(pairing_store.pending_path, {"r1": pending_request("dev-A")})
        daemon = SelfApprovalDaemon(
            pairing_store, identity_path, mock_metrics, poll_interval=0.01, timeout=0
        )

        assert await daemon.run() is PairingState.WAITING
        assert not pairing_store.paired_path.exists()

    async def test_approves_request_that_arrives_later(self, daemon, pairing_store, identity):
        task = asyncio.create_task(daemon.run())
        await asyncio.sleep(0.03)
        assert not task.done()

        write_json(pairing_store.pending_path, {"r1": pending_request("dev-A", role="node")})

        assert await task is PairingState.DONE
        assert "dev-A" in read_json(pairing_store.paired_path)

    async def test_cancellation(self, pairing_store, identity_path, identity, mock_metrics):
        daemon = SelfApprovalDaemon(
            pairing_store, identity_path, mock_metrics, poll_interval=0.01, timeout=60
        )
        task = asyncio.create_task(daemon.run())
        await asyncio.sleep(0.03)

        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert mock_metrics.count("openclaw.pairing.timeout") == 0

    async def test_invalid_own_request_is_reported_once(
        self, daemon, pairing_store, identity, mock_metrics
    ):
        pending = {"r1": pending_request("dev-A", role="bad role")}
        write_json(pairing_store.pending_path, pending)

        with patch("openclaw.sandbox.app.tasks.sentry_sdk.capture_exception") as capture:
            assert await daemon.run() is PairingState.WAITING

        capture.assert_called_once()
        assert mock_metrics.count("openclaw.pairing.exception") == 1
        assert read_json(pairing_store.pending_path) == pending

    async def test_invalid_duplicate_does_not_block_valid_one(
        self, daemon, pairing_store, identity, mock_metrics
    ):
        write_json(
            pairing_store.pending_path,
            {
                "r1": pending_request("dev-A", role="bad role"),
                "r2": pending_request("dev-A", role="operator"),
            },
        )

        with patch("openclaw.sandbox.app.tasks.sentry_sdk.capture_exception") as capture:
            assert await daemon.run() is PairingState.DONE

        capture.assert_called_once()
        assert list(read_json(pairing_store.pending_path)) == ["r1"]
        device = read_json(pairing_store.paired_path)["dev-A"]
        assert list(device["tokens"]) == ["operator"]
        assert mock_metrics.count("openclaw.pairing.approved") == 1

    async def test_busy_lock_does_not_block_the_event_loop(
        self, daemon, devices_dir, identity, pairing_store, mock_metrics
    ):
        write_json(pairing_store.pending_path, {"r1": pending_request("dev-A", role="node")})
        other_writer = PairingStore(devices_dir)
        gaps = []

        async def heartbeat():
            loop = asyncio.get_running_loop()
            last = loop.time()
            while True:
                await asyncio.sleep(0.01)
                now = loop.time()
                gaps.append(now - last)
                last = now

        beat = asyncio.create_task(heartbeat())
        try:
            with other_writer.locked():
                task = asyncio.create_task(daemon.run())
                await asyncio.sleep(0.1)
                assert not task.done()
                assert not pairing_store.paired_path.exists()

            assert await task is PairingState.DONE
        finally:
            beat.cancel()
            with pytest.raises(asyncio.CancelledError):
                await beat

        assert max(gaps) < 0.08
        assert mock_metrics.count("openclaw.pairing.exception") == 0
        assert "dev-A" in read_json(pairing_store.paired_path)

    async def test_write_failure_is_reported_and_retried(
        self, daemon, pairing_store, identity, mock_metrics
    ):
        write_json(pairing_store.pending_path, {"r1": pending_request("dev-A", role="node")})
        failures = []
        original_save = pairing_store.save

        def flaky_save(pending, paired):
            if not failures:
                failures.append(True)
                raise OSError("disk full")
            original_save(pending, paired)

        with patch.object(pairing_store, "save", side_effect=flaky_save), patch(
            "openclaw.sandbox.app.tasks.sentry_sdk.capture_exception"
        ) as capture:
            assert await daemon.run() is PairingState.DONE

        capture.assert_called_once()
        assert mock_metrics.count("openclaw.pairing.exception") == 1
        assert mock_metrics.count("openclaw.pairing.approved") == 1
        assert "dev-A" in read_json(pairing_store.paired_path)
