from __future__ import annotations

from prometheus_client import Counter, Histogram

from adapters.metrics.base import Metrics, ToolOutcome
from sqlgate.prom import REGISTRY
from sqlgate.tools import TOOLS

# -----------------------------------------------------------------------------
# Tool-level metrics
# -----------------------------------------------------------------------------
tool_duration_ms = Histogram(
    "tool_duration_ms",
    "Duration (ms) of each tool call",
    ["tool"],
    buckets=(1, 2, 5, 10, 20, 50, 100, 200, 500, 1000, 2000, 5000, 10000, 30000, 60000),
    registry=REGISTRY,
)

tool_calls_total = Counter(
    "tool_calls_total",
    "Count of tool calls labeled by tool and outcome",
    ["tool", "outcome"],
    registry=REGISTRY,
)

# -----------------------------------------------------------------------------
# Connection metrics
# -----------------------------------------------------------------------------
connection_retries_total = Counter(
    "connection_retries_total",
    "Operations retried after a connection-class fault",
    ["backend"],
    registry=REGISTRY,
)

connection_failures_total = Counter(
    "connection_failures_total",
    "Failed attempts to open a backend connection",
    ["backend"],
    registry=REGISTRY,
)


class PrometheusMetrics(Metrics):
    def observe_tool_duration_ms(self, *, tool: str, dt_ms: float) -> None:
        tool_duration_ms.labels(tool=tool).observe(float(dt_ms))

    def inc_tool_call(self, *, tool: str, outcome: ToolOutcome) -> None:
        tool_calls_total.labels(tool=tool, outcome=outcome).inc()

    def inc_connection_retry(self, *, backend: str) -> None:
        connection_retries_total.labels(backend=backend).inc()

    def inc_connection_failure(self, *, backend: str) -> None:
        connection_failures_total.labels(backend=backend).inc()


# -----------------------------------------------------------------------------
# Label priming to keep /metrics stable
# -----------------------------------------------------------------------------
for tool in TOOLS:
    for outcome in ("ok", "error", "pending"):
        tool_calls_total.labels(tool=tool, outcome=outcome).inc(0)

for backend in ("sqlite", "sqlserver", "postgresql", "mysql"):
    connection_retries_total.labels(backend=backend).inc(0)
    connection_failures_total.labels(backend=backend).inc(0)
