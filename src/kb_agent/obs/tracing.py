"""Operation tracing: durations, success flags and per-operation metrics."""

from __future__ import annotations

import logging
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from kb_agent.types import ToolTrace

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TraceRecord:
    trace_id: str
    timestamp_utc: str
    operation: str
    success: bool
    latency_ms: float
    metrics: dict[str, Any] = field(default_factory=dict)
    error_code: str | None = None
    tool_traces: list[ToolTrace] = field(default_factory=list)


class TraceStore:
    """In-memory trace storage for API-level observability.

    Holds at most `max_records` entries; the oldest are evicted first.
    """

    def __init__(self, *, max_records: int = 1000) -> None:
        self._records: OrderedDict[str, TraceRecord] = OrderedDict()
        self._max_records = max_records

    def record(
        self,
        operation: str,
        *,
        success: bool,
        latency_ms: float,
        metrics: dict[str, Any] | None = None,
        error_code: str | None = None,
        tool_traces: list[ToolTrace] | None = None,
    ) -> TraceRecord:
        record = TraceRecord(
            trace_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            operation=operation,
            success=success,
            latency_ms=latency_ms,
            metrics=dict(metrics or {}),
            error_code=error_code,
            tool_traces=list(tool_traces or []),
        )
        self._records[record.trace_id] = record
        while len(self._records) > self._max_records:
            self._records.popitem(last=False)

        log = logger.info if success else logger.warning
        log(
            "operation %s finished",
            operation,
            extra={
                "operation": operation,
                "success": success,
                "latency_ms": round(latency_ms, 2),
                "error_code": error_code,
                **record.metrics,
            },
        )
        return record

    def get(self, trace_id: str) -> TraceRecord:
        record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[TraceRecord]:
        return list(self._records.values())[-limit:]

    def summary(self) -> dict[str, Any]:
        """Aggregate core observability metrics for dashboard display."""
        records = list(self._records.values())
        total = len(records)
        if total == 0:
            return {
                "total_operations": 0,
                "failed_operations": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "by_operation": {},
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        by_operation: dict[str, int] = {}
        for record in records:
            by_operation[record.operation] = by_operation.get(record.operation, 0) + 1

        return {
            "total_operations": total,
            "failed_operations": sum(1 for record in records if not record.success),
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "by_operation": by_operation,
        }


class Timer:
    """Simple context timer used around each traced operation."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
