"""
Structured Event Logging and Metrics
====================================
Machine-readable companion to the console log:
- JSON lines event log with size-based rotation
- Per-wallet correlation through a context variable (safe across asyncio tasks)
- Latency samples for every broadcast and nonce fetch
- Rich table of per-operation latency percentiles
"""

import json
import logging
import logging.handlers
import statistics
import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from rich.table import Table
from rich import box


# Wallet currently being processed by this task (None outside a sender loop)
_wallet_id: ContextVar[Optional[int]] = ContextVar("wallet_id", default=None)


@contextmanager
def wallet_context(wallet_id: int):
    """Tag every event emitted inside the block with `wallet_id`."""
    token = _wallet_id.set(wallet_id)
    try:
        yield
    finally:
        _wallet_id.reset(token)


def current_wallet_id() -> Optional[int]:
    return _wallet_id.get()


@dataclass
class PerformanceMetrics:
    """One timed RPC call."""
    operation: str
    started_at: float = field(default_factory=time.time)
    wallet_id: Optional[int] = field(default_factory=current_wallet_id)
    nonce: Optional[int] = None
    tx_hash: Optional[str] = None
    duration_ms: Optional[float] = None
    success: bool = False
    error: Optional[str] = None
    _clock: float = field(default_factory=time.perf_counter, repr=False)

    def finish(self, error: Optional[BaseException] = None):
        self.duration_ms = (time.perf_counter() - self._clock) * 1000
        self.success = error is None
        if error is not None:
            self.error = f"{type(error).__name__}: {error}"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("_clock")
        data["started_at"] = datetime.fromtimestamp(self.started_at, tz=timezone.utc).isoformat()
        if self.duration_ms is not None:
            data["duration_ms"] = round(self.duration_ms, 2)
        return data


def _percentile(samples: List[float], pct: int) -> float:
    if not samples:
        return 0.0
    if len(samples) == 1:
        return samples[0]
    return statistics.quantiles(samples, n=100, method="inclusive")[pct - 1]


class MetricsCollector:
    """
    Thread-safe store of PerformanceMetrics with per-operation rollups.

    Every sample is kept until clear() so save_to_file can dump the full
    series. Memory grows with the number of calls (roughly one broadcast
    per transaction plus retries), which is fine for a single CLI run.
    Long-lived callers should save and clear between runs.
    """

    def __init__(self):
        self.metrics: List[PerformanceMetrics] = []
        self._lock = threading.Lock()

    def add_metric(self, metric: PerformanceMetrics):
        """Append one sample; nothing is evicted."""
        with self._lock:
            self.metrics.append(metric)

    def clear(self):
        with self._lock:
            self.metrics.clear()

    def get_summary(self) -> Dict[str, Any]:
        """
        Rollup of everything recorded so far.

        Returns:
            {'total_operations': n,
             'operations': {op: {total, success, failure, success_rate, p50_ms, p95_ms, max_ms}},
             'wallets': {wallet_id: {op: total}}}
        """
        with self._lock:
            recorded = list(self.metrics)

        grouped: Dict[str, List[PerformanceMetrics]] = defaultdict(list)
        per_wallet: Dict[Any, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        for m in recorded:
            grouped[m.operation].append(m)
            per_wallet[m.wallet_id][m.operation] += 1

        operations = {}
        for op, items in grouped.items():
            ok = sum(1 for m in items if m.success)
            latencies = sorted(m.duration_ms for m in items if m.duration_ms is not None)
            operations[op] = {
                'total': len(items),
                'success': ok,
                'failure': len(items) - ok,
                'success_rate': round(ok / len(items) * 100, 2),
                'p50_ms': round(_percentile(latencies, 50), 2),
                'p95_ms': round(_percentile(latencies, 95), 2),
                'max_ms': round(latencies[-1], 2) if latencies else 0.0,
            }

        return {
            'total_operations': len(recorded),
            'operations': operations,
            'wallets': {wid: dict(ops) for wid, ops in per_wallet.items()},
        }

    def save_to_file(self, filepath: str):
        """Write the rollup and every sample as JSON."""
        summary = self.get_summary()
        with self._lock:
            samples = [m.to_dict() for m in self.metrics]

        path = Path(filepath)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump({'summary': summary, 'metrics': samples}, f, indent=2, default=str)


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'ts': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname.lower(),
            'event': record.getMessage(),
            'wallet_id': getattr(record, 'wallet_id', None),
        }
        data = getattr(record, 'data', None)
        if data:
            entry['data'] = data
        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class StructuredLogger:
    """
    JSON event logger with metrics.

    Usage:
        events = StructuredLogger('tx_blaster.events', 'logs/events.jsonl')
        with wallet_context(3):
            with events.timed_operation('broadcast', nonce=12) as metric:
                metric.tx_hash = await node.broadcast(raw)
    """

    def __init__(
        self,
        name: str = 'tx_blaster.events',
        log_file: Optional[str] = None,
        max_bytes: int = 10 * 1024 * 1024,
        backup_count: int = 5,
    ):
        self.name = name
        self.metrics = MetricsCollector()

        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.DEBUG)
        # Events go to their own file only, never to the console
        self.logger.propagate = False
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()

        if log_file:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            handler = logging.handlers.RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count)
            handler.setFormatter(JSONFormatter())
        else:
            handler = logging.NullHandler()
        self.logger.addHandler(handler)

    def event(self, level: int, message: str, **data):
        self.logger.log(level, message, extra={'wallet_id': current_wallet_id(), 'data': data})

    def info(self, message: str, **data):
        self.event(logging.INFO, message, **data)

    def warning(self, message: str, **data):
        self.event(logging.WARNING, message, **data)

    def error(self, message: str, **data):
        self.event(logging.ERROR, message, **data)

    @contextmanager
    def timed_operation(self, operation: str, nonce: Optional[int] = None) -> Iterator[PerformanceMetrics]:
        """Time the block, record it, and emit one event; exceptions propagate."""
        metric = PerformanceMetrics(operation=operation, nonce=nonce)
        try:
            yield metric
        except BaseException as e:
            metric.finish(e)
            raise
        else:
            metric.finish()
        finally:
            self.metrics.add_metric(metric)
            level = logging.INFO if metric.success else logging.WARNING
            self.event(level, f"{operation} {'ok' if metric.success else 'failed'}", **metric.to_dict())

    def metrics_table(self) -> Table:
        """Rich table with one row per operation."""
        operations = self.metrics.get_summary()['operations']

        table = Table(title="RPC Metrics", box=box.ROUNDED)
        table.add_column("Operation", style="cyan")
        for heading in ("Calls", "OK", "Failed", "OK %", "p50 ms", "p95 ms", "max ms"):
            table.add_column(heading, justify="right")

        for op, s in sorted(operations.items()):
            table.add_row(
                op,
                str(s['total']),
                f"[green]{s['success']}[/green]",
                f"[red]{s['failure']}[/red]" if s['failure'] else "0",
                f"{s['success_rate']:.1f}",
                f"{s['p50_ms']:.1f}",
                f"{s['p95_ms']:.1f}",
                f"{s['max_ms']:.1f}",
            )
        return table

    def save_metrics(self, filepath: str):
        self.metrics.save_to_file(filepath)
        self.info("metrics saved", path=filepath)


# Process-wide event logger
_event_logger: Optional[StructuredLogger] = None


def get_event_logger(log_file: Optional[str] = None) -> StructuredLogger:
    """Get or create the process event logger."""
    global _event_logger
    if _event_logger is None:
        _event_logger = StructuredLogger(log_file=log_file)
    return _event_logger
