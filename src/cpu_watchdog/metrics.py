"""Prometheus client for the target's CPU usage rate."""

from typing import Any

import httpx
import structlog

from cpu_watchdog.config import PrometheusConfig, TargetConfig

log = structlog.get_logger()


class MetricsUnavailable(Exception):
    """No usable sample could be read from the metrics source."""


def build_query(metric: str, pod_name: str, cpu_limit: int) -> str:
    """Build the PromQL expression for CPU usage as a percentage of the limit.

    >>> build_query("container_cpu_usage_rate", "web-0", 8)
    'container_cpu_usage_rate{pod="web-0"}/8*100'
    """
    return f'{metric}{{pod="{pod_name}"}}/{cpu_limit}*100'


def parse_instant_value(body: Any) -> float:
    """Extract `data.result[0].value[1]` from an instant query response.

    Raises:
        MetricsUnavailable: If the body is not a successful vector result
    """
    if not isinstance(body, dict):
        raise MetricsUnavailable("response body is not a JSON object")
    if body.get("status") != "success":
        raise MetricsUnavailable(f"query status {body.get('status')!r}: {body.get('error', '')}")

    data = body.get("data")
    if not isinstance(data, dict):
        raise MetricsUnavailable(f"malformed data field: {data!r}")

    result = data.get("result")
    if not result:
        raise MetricsUnavailable("query returned no series")
    if not isinstance(result, list):
        raise MetricsUnavailable(f"malformed result field: {result!r}")

    value = result[0].get("value") if isinstance(result[0], dict) else None
    if not isinstance(value, list) or len(value) < 2:
        raise MetricsUnavailable(f"malformed sample value: {value!r}")

    try:
        return float(value[1])
    except (TypeError, ValueError) as e:
        raise MetricsUnavailable(f"sample value is not a number: {value[1]!r}") from e


class PrometheusClient:
    """Instant-query client for a Prometheus-compatible HTTP API."""

    def __init__(
        self,
        config: PrometheusConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._client = httpx.AsyncClient(
            base_url=config.url,
            timeout=config.timeout_seconds,
            transport=transport,
        )

    async def fetch_rate(self, query: str) -> float:
        """Run an instant query and return its first sample value.

        Raises:
            MetricsUnavailable: On transport errors, non-200 responses or
                responses without a numeric sample
        """
        try:
            response = await self._client.get("/api/v1/query", params={"query": query})
        except httpx.HTTPError as e:
            raise MetricsUnavailable(f"request failed: {e}") from e

        if response.status_code != 200:
            raise MetricsUnavailable(f"unexpected status code {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise MetricsUnavailable(f"invalid JSON body: {e}") from e

        return parse_instant_value(body)

    async def current_rate(self, target: TargetConfig) -> float:
        """Fetch the target's CPU usage as a percentage of its limit."""
        query = build_query(self.config.metric, target.pod_name, target.cpu_limit)
        rate = await self.fetch_rate(query)
        log.debug("rate_fetched", pod=target.pod_name, rate=rate)
        return rate

    async def aclose(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._client.aclose()
