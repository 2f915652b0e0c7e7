"""
Tests for the process supervisor and its command line.

Tests cover running the gateway child process, signal forwarding, the lifecycle of the
background tasks and the metrics client, and argument parsing.
"""

import asyncio
import os
import signal
from unittest.mock import patch

import pytest

from openclaw.sandbox.app.cli import parse_args
from openclaw.sandbox.app.config import Settings
from openclaw.sandbox.app.supervisor import background_tasks, run_supervisor
from tests.test_helpers import write_json


@pytest.fixture
def settings(clean_env, state_dir, codex_auth_path):
    return Settings(
        state_dir=state_dir,
        codex_auth_path=codex_auth_path,
        pairing_poll_interval=0.01,
        auth_poll_interval=0.01,
        auth_debounce=0.01,
    )


class TestRunSupervisor:
    """Test running the gateway next to the background tasks."""

    async def test_returns_gateway_exit_code(self, settings, mock_metrics):
        returncode = await run_supervisor(
            settings,
            ["/bin/sh", "-c", "exit 3"],
            auth_sync=False,
            self_approve=False,
            metrics_client=mock_metrics,
        )

        assert returncode == 3
        assert mock_metrics.connected
        assert mock_metrics.closed

    async def test_forwards_sigterm_to_gateway(self, settings, mock_metrics):
        loop = asyncio.get_running_loop()
        loop.call_later(0.2, os.kill, os.getpid(), signal.SIGTERM)

        returncode = await run_supervisor(
            settings,
            ["sleep", "10"],
            auth_sync=False,
            self_approve=False,
            metrics_client=mock_metrics,
        )

        assert returncode == 128 + signal.SIGTERM

    async def test_sigterm_while_spawning_reaches_gateway(self, settings, mock_metrics):
        spawn = asyncio.create_subprocess_exec

        async def slow_spawn(*args, **kwargs):
            os.kill(os.getpid(), signal.SIGTERM)
            await asyncio.sleep(0.05)
            return await spawn(*args, **kwargs)

        with patch(
            "openclaw.sandbox.app.supervisor.asyncio.create_subprocess_exec",
            side_effect=slow_spawn,
        ):
            returncode = await asyncio.wait_for(
                run_supervisor(
                    settings,
                    ["sleep", "10"],
                    auth_sync=False,
                    self_approve=False,
                    metrics_client=mock_metrics,
                ),
                timeout=5,
            )

        assert returncode == 128 + signal.SIGTERM
        assert mock_metrics.closed

    async def test_without_gateway_runs_until_signalled(self, settings, mock_metrics):
        loop = asyncio.get_running_loop()
        loop.call_later(0.05, os.kill, os.getpid(), signal.SIGINT)

        returncode = await run_supervisor(settings, None, metrics_client=mock_metrics)

        assert returncode == 0
        assert mock_metrics.closed

    async def test_background_tasks_run_with_gateway(
        self, settings, codex_auth_path, mock_metrics
    ):
        write_json(
            codex_auth_path,
            {"tokens": {"access_token": "a", "refresh_token": "r"}},
        )

        returncode = await run_supervisor(
            settings,
            ["/bin/sh", "-c", "sleep 0.2"],
            self_approve=False,
            metrics_client=mock_metrics,
        )

        assert returncode == 0
        assert settings.auth_store_path.exists()
        assert mock_metrics.count("openclaw.auth_sync.synced") == 1


class TestBackgroundTasks:
    async def test_tasks_are_cancelled_on_exit(self, settings, identity_path, mock_metrics):
        write_json(identity_path, {"deviceId": "dev-A"})

        async with background_tasks(settings, mock_metrics) as tasks:
            assert sorted(tasks) == ["auth_sync", "self_approve"]
            await asyncio.sleep(0.05)

        assert all(task.done() for task in tasks.values())
        assert tasks["auth_sync"].cancelled()
        assert tasks["self_approve"].cancelled()

    async def test_disabled_tasks(self, settings, mock_metrics):
        async with background_tasks(
            settings, mock_metrics, auth_sync=False, self_approve=False
        ) as tasks:
            assert tasks == {}


class TestParseArgs:
    def test_defaults(self):
        args = parse_args([])

        assert args.auth_sync is True
        assert args.self_approve is True
        assert args.command == []

    def test_gateway_command_after_separator(self):
        args = parse_args(["--no-auth-sync", "--", "node", "dist/index.js", "--bind", "lan"])

        assert args.auth_sync is False
        assert args.self_approve is True
        assert args.command == ["node", "dist/index.js", "--bind", "lan"]

    def test_no_self_approve(self):
        assert parse_args(["--no-self-approve"]).self_approve is False
