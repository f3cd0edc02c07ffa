from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Literal

ToolOutcome = Literal["ok", "error", "pending"]


class Metrics(ABC):
    @abstractmethod
    def observe_tool_duration_ms(self, *, tool: str, dt_ms: float) -> None: ...

    @abstractmethod
    def inc_tool_call(self, *, tool: str, outcome: ToolOutcome) -> None: ...

    @abstractmethod
    def inc_connection_retry(self, *, backend: str) -> None: ...

    @abstractmethod
    def inc_connection_failure(self, *, backend: str) -> None: ...
