"""
Grafana OTLP Metrics Exporter
==============================

Pushes LLM usage and grouping decisions to Grafana Cloud via OTLP.

Metrics exported:
- llm_tokens_total / llm_latency_ms: per LLM operation (classification,
  embedding, summary, arbitration)
- grouping_decisions_total: one data point per grouped message, tagged with
  the step that placed it (thread, canonical_key, semantic, recent_channel,
  created, dropped)
"""

import base64
import time
from typing import Optional, Dict, Any, List

import httpx

from ticketdedup.config import settings
from ticketdedup.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


def _attributes(values: Dict[str, Any]) -> List[dict]:
    return [
        {"key": key, "value": {"stringValue": str(value)}}
        for key, value in values.items()
    ]


def _gauge(name: str, unit: str, value: int, timestamp_ns: int, attributes: List[dict]) -> dict:
    return {
        "name": name,
        "unit": unit,
        "gauge": {
            "dataPoints": [
                {
                    "asInt": value,
                    "timeUnixNano": timestamp_ns,
                    "attributes": attributes
                }
            ]
        }
    }


class GrafanaOTLPExporter:
    """
    Export metrics to Grafana Cloud via the OTLP HTTP endpoint.

    Every export is best effort: failures are logged and reported as False,
    never raised into the grouping pipeline.
    """

    def __init__(
        self,
        host: Optional[str] = None,
        api_key: Optional[str] = None,
        instance_id: Optional[str] = None,
        timeout: float = 10.0
    ):
        self._host = host or settings.grafana_host
        self._api_key = api_key or settings.grafana_api_key
        self._instance_id = instance_id or settings.grafana_instance_id
        self._timeout = timeout
        self._enabled = bool(self._host and self._api_key and self._instance_id)

        if self._enabled:
            auth_pair = f"{self._instance_id}:{self._api_key}"
            self._auth_encoded = base64.b64encode(auth_pair.encode()).decode()
            if "/otlp/v1/metrics" not in self._host:
                self._url = f"{self._host.rstrip('/')}/otlp/v1/metrics"
            else:
                self._url = self._host
            logger.info(
                "Grafana OTLP exporter initialized",
                extra={"host": self._host, "instance_id": self._instance_id}
            )

    def is_enabled(self) -> bool:
        """Check if exporter is properly configured."""
        return self._enabled

    def build_payload(self, metrics: List[dict]) -> dict:
        """Wrap metric entries in an OTLP resourceMetrics envelope."""
        return {
            "resourceMetrics": [
                {
                    "resource": {
                        "attributes": _attributes({
                            "service.name": settings.app_name,
                            "service.version": settings.app_version,
                            "deployment.environment": settings.environment,
                        })
                    },
                    "scopeMetrics": [{"metrics": metrics}]
                }
            ]
        }

    async def _post(self, metrics: List[dict]) -> bool:
        if not self._enabled:
            return False

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Basic {self._auth_encoded}",
            "X-Grafana-Org-Id": str(self._instance_id)
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    self._url,
                    headers=headers,
                    json=self.build_payload(metrics)
                )
        except httpx.HTTPError as e:
            logger.error("Error exporting metrics to Grafana", extra={"error": str(e)})
            return False

        if response.status_code in (200, 202):
            return True

        logger.warning(
            "Failed to export metrics to Grafana",
            extra={
                "status_code": response.status_code,
                "response": response.text[:500],
                "url": self._url
            }
        )
        return False

    async def export_llm_metrics(
        self,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
        latency_ms: int,
        operation: str = "chat_completion"
    ) -> bool:
        """
        Export LLM usage for one call.

        Args:
            model: Model name
            prompt_tokens: Prompt tokens used
            completion_tokens: Completion tokens generated
            latency_ms: Request latency in milliseconds
            operation: classification, embedding, summary or arbitration

        Returns:
            True if export succeeded, False otherwise
        """
        timestamp_ns = int(time.time() * 1_000_000_000)
        attributes = _attributes({
            "model": model,
            "operation": operation,
            "service": settings.app_name,
        })
        return await self._post([
            _gauge("llm_tokens_total", "1", prompt_tokens + completion_tokens, timestamp_ns, attributes),
            _gauge("llm_latency_ms", "ms", latency_ms, timestamp_ns, attributes),
        ])

    async def export_grouping_decision(
        self,
        step: str,
        category: str,
        latency_ms: int
    ) -> bool:
        """Export which grouping step resolved a message."""
        timestamp_ns = int(time.time() * 1_000_000_000)
        attributes = _attributes({
            "step": step,
            "category": category,
            "service": settings.app_name,
        })
        return await self._post([
            _gauge("grouping_decisions_total", "1", 1, timestamp_ns, attributes),
            _gauge("grouping_latency_ms", "ms", latency_ms, timestamp_ns, attributes),
        ])


# Global exporter instance
_grafana_exporter: Optional[GrafanaOTLPExporter] = None


def get_grafana_exporter() -> Optional[GrafanaOTLPExporter]:
    """Get the global exporter, or None before init_grafana_exporter() ran."""
    return _grafana_exporter


def init_grafana_exporter(
    host: str,
    api_key: str,
    instance_id: str
) -> GrafanaOTLPExporter:
    """Initialize Grafana exporter with credentials."""
    global _grafana_exporter
    _grafana_exporter = GrafanaOTLPExporter(
        host=host,
        api_key=api_key,
        instance_id=instance_id
    )
    return _grafana_exporter
