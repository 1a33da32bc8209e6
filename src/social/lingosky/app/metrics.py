"""
Metrics for the Lingosky gateway.

Handlers and middlewares record metrics through the MetricsClient interface, so the
backend can be switched by configuration:

- TelegrafMetricsClient: StatsD with Telegraf tags, via aio-statsd
- NoOpMetricsClient: metrics disabled, used in development and tests

Metric names are prefixed with `lingosky.`, for example `lingosky.server.request.count`
or `lingosky.oauth.token.exchange`.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Union

from aio_statsd import TelegrafStatsdClient

logger = logging.getLogger(__name__)

Number = Union[int, float]


class MetricsClient(ABC):
    """
    Abstract metrics client.

    Supports counters and timers. Tags are passed as a flat dictionary
    of dimension names to values.
    """

    async def connect(self) -> None:
        """Open any connection the backend needs. Called once at startup."""

    @abstractmethod
    def increment(
        self, name: str, value: Number = 1, tag_dict: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Increment a counter metric by the specified value.

        Args:
            name: Metric name (e.g., 'lingosky.server.request.count')
            value: Amount to increment by (default: 1)
            tag_dict: Optional tags for metric dimensions
        """

    @abstractmethod
    def timer(
        self, name: str, value: Number, tag_dict: Optional[Dict[str, Any]] = None
    ) -> None:
        """Record a duration in seconds."""

    @abstractmethod
    async def close(self) -> None:
        """Flush and release the backend."""


class TelegrafMetricsClient(MetricsClient):
    """MetricsClient that delegates to an aio-statsd TelegrafStatsdClient."""

    def __init__(self, telegraf_client: TelegrafStatsdClient):
        self.client = telegraf_client

    async def connect(self) -> None:
        await self.client.connect()

    def increment(
        self, name: str, value: Number = 1, tag_dict: Optional[Dict[str, Any]] = None
    ) -> None:
        self.client.increment(name, value, tag_dict=tag_dict or {})

    def timer(
        self, name: str, value: Number, tag_dict: Optional[Dict[str, Any]] = None
    ) -> None:
        self.client.timer(name, value, tag_dict=tag_dict or {})

    async def close(self) -> None:
        try:
            await self.client.close()
        except (OSError, RuntimeError) as e:
            logger.warning("Error closing Telegraf client: %s", e)


class NoOpMetricsClient(MetricsClient):
    """Metrics client that records nothing."""

    def increment(
        self, name: str, value: Number = 1, tag_dict: Optional[Dict[str, Any]] = None
    ) -> None:
        pass

    def timer(
        self, name: str, value: Number, tag_dict: Optional[Dict[str, Any]] = None
    ) -> None:
        pass

    async def close(self) -> None:
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
        debug: Enable aio-statsd debug logging

    Raises:
        ValueError: If the backend name is unknown
    """
    backend = backend.lower()

    if backend == "telegraf":
        return TelegrafMetricsClient(
            TelegrafStatsdClient(host=host, port=port, debug=debug)
        )
    elif backend == "none":
        logger.info("Metrics collection disabled (no-op client)")
        return NoOpMetricsClient()

    raise ValueError(
        f"Invalid metrics backend: {backend}. Supported backends: 'telegraf', 'none'"
    )
