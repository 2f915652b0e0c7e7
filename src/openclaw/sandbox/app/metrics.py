"""
Metrics for the Sandbox Background Tasks

A small metrics interface so that the background tasks can count approvals, syncs and
failures without knowing whether a collector is present. Two backends are provided:

- TelegrafCompatibilityClient: Wraps aio-statsd's TelegrafStatsdClient
- NoOpMetricsClient: Drops everything, the default inside locked-down containers

create_metrics_client selects one from the settings.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Union

from aio_statsd import TelegrafStatsdClient

logger = logging.getLogger(__name__)


class MetricsClient(ABC):
    """
    Metrics interface used by the background tasks.

    Tags are StatsD-style dictionaries.
    """

    @abstractmethod
    def increment(
        self,
        name: str,
        value: Union[int, float] = 1,
        tag_dict: Optional[Dict[str, Any]] = None,
    ) -> None:
        pass

    @abstractmethod
    def timer(
        self,
        name: str,
        value: Union[int, float],
        tag_dict: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Record a duration in seconds."""
        pass

    async def connect(self) -> None:
        pass

    async def close(self) -> None:
        pass


class TelegrafCompatibilityClient(MetricsClient):
    """Delegates to a TelegrafStatsdClient."""

    def __init__(self, telegraf_client: Any):
        self.client = telegraf_client

    def increment(
        self,
        name: str,
        value: Union[int, float] = 1,
        tag_dict: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.client.increment(name, value, tag_dict=tag_dict or {})

    def timer(
        self,
        name: str,
        value: Union[int, float],
        tag_dict: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.client.timer(name, value, tag_dict=tag_dict or {})

    async def connect(self) -> None:
        await self.client.connect()

    async def close(self) -> None:
        try:
            await self.client.close()
        except Exception as e:
            logger.warning("Error closing Telegraf client: %s", e)


class NoOpMetricsClient(MetricsClient):
    def increment(
        self,
        name: str,
        value: Union[int, float] = 1,
        tag_dict: Optional[Dict[str, Any]] = None,
    ) -> None:
        pass

    def timer(
        self,
        name: str,
        value: Union[int, float],
        tag_dict: Optional[Dict[str, Any]] = None,
    ) -> None:
        pass


def create_metrics_client(
    backend: str,
    host: str = "localhost",
    port: int = 8125,
    debug: bool = False,
) -> MetricsClient:
    """
    Create the metrics client for a backend name.

    Args:
        backend: 'telegraf' or 'none'
        host: Telegraf/StatsD host
        port: Telegraf/StatsD port
        debug: Enable client debug output

    Raises:
        ValueError: If the backend name is unknown
    """
    backend = backend.strip().lower()

    if backend == "telegraf":
        return TelegrafCompatibilityClient(
            TelegrafStatsdClient(host=host, port=port, debug=debug)
        )

    if backend in ("none", ""):
        logger.debug("Metrics collection disabled (no-op client)")
        return NoOpMetricsClient()

    raise ValueError(
        f"Invalid metrics backend: {backend}. Supported backends: 'telegraf', 'none'"
    )
