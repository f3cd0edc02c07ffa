from __future__ import annotations

from adapters.metrics.base import Metrics, ToolOutcome


class NoOpMetrics(Metrics):
    def observe_tool_duration_ms(self, *, tool: str, dt_ms: float) -> None:
        return

    def inc_tool_call(self, *, tool: str, outcome: ToolOutcome) -> None:
        return

    def inc_connection_retry(self, *, backend: str) -> None:
        return

    def inc_connection_failure(self, *, backend: str) -> None:
        return
