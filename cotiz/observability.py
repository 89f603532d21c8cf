from __future__ import annotations

import bisect
import contextlib
import contextvars
import json
import logging
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Tuple

from flask import g, has_request_context, request


_LATENCY_LIMITS_MS: Tuple[float, ...] = (5.0, 10.0, 25.0, 50.0, 100.0, 250.0, 500.0, 1000.0, 2500.0, 5000.0, 10000.0)

# metric name -> (label, help text)
COUNTER_FAMILIES: Dict[str, Tuple[str, str]] = {
    "domain_event_emitted_total": ("event_type", "Domain events published on the in-process bus."),
    "domain_event_schema_invalid_total": ("schema_name", "Domain events dropped for failing schema validation."),
    "approval_resolution_total": ("result", "Approval level resolutions by result."),
    "approval_decision_total": ("outcome", "Approval decisions by outcome."),
}

_NO_REQUEST_ID = "n/a"
_request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("cotiz_request_id", default="")


def _clean_request_id(value: str | None) -> str:
    return str(value or "").strip() or _NO_REQUEST_ID


def set_log_request_id(request_id: str | None) -> None:
    """Tag log lines emitted outside a Flask request (CLI, handlers run later)."""
    _request_id_var.set(_clean_request_id(request_id))


@contextlib.contextmanager
def bind_request_id(request_id: str | None) -> Iterator[str]:
    token = _request_id_var.set(_clean_request_id(request_id))
    try:
        yield _request_id_var.get()
    finally:
        _request_id_var.reset(token)


def current_request_id(default: str | None = None) -> str:
    if has_request_context():
        bound = str(getattr(g, "request_id", "") or "").strip()
        if bound:
            return bound
    return str(_request_id_var.get() or "").strip() or default or _NO_REQUEST_ID


def ensure_request_id() -> str:
    """Reuse the caller's ``X-Request-Id`` or mint one, once per request."""
    request_id = str(getattr(g, "request_id", "") or "").strip()
    if not request_id:
        request_id = str(request.headers.get("X-Request-Id") or "").strip() or str(uuid.uuid4())
        g.request_id = request_id
    set_log_request_id(request_id)
    return request_id


_RESERVED_RECORD_KEYS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line; ``extra=`` fields are copied as top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, object] = {
            "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if has_request_context():
            entry["request_id"] = current_request_id()
            entry["method"] = request.method
            entry["path"] = request.path
            if request.url_rule is not None:
                entry["route"] = request.url_rule.rule
        else:
            entry["request_id"] = str(getattr(record, "request_id", "") or "").strip() or current_request_id()

        for key, value in vars(record).items():
            if key in _RESERVED_RECORD_KEYS or key.startswith("_") or key in entry or callable(value):
                continue
            entry[key] = value

        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=True, separators=(",", ":"), default=str)


def configure_json_logging(app) -> None:
    if not app.config.get("LOG_JSON", True):
        return
    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter())
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).strip().upper(), logging.INFO))
    app.logger.handlers = []
    app.logger.propagate = True


class _LatencyHistogram:
    def __init__(self) -> None:
        self.bucket_counts = [0] * len(_LATENCY_LIMITS_MS)
        self.count = 0
        self.total = 0.0
        self.maximum = 0.0

    def observe(self, value_ms: float) -> None:
        value = max(0.0, float(value_ms))
        index = bisect.bisect_left(_LATENCY_LIMITS_MS, value)
        if index < len(self.bucket_counts):
            self.bucket_counts[index] += 1
        self.count += 1
        self.total += value
        self.maximum = max(self.maximum, value)

    def cumulative(self) -> List[Tuple[str, int]]:
        running = 0
        buckets: List[Tuple[str, int]] = []
        for limit, count in zip(_LATENCY_LIMITS_MS, self.bucket_counts):
            running += count
            buckets.append((f"{limit:g}", running))
        buckets.append(("+Inf", self.count))
        return buckets


def _escape_label(value: object) -> str:
    return str(value).replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _sample(name: str, value: int | float, **labels: object) -> str:
    if not labels:
        return f"{name} {value}"
    rendered = ",".join(f'{key}="{_escape_label(labels[key])}"' for key in sorted(labels))
    return f"{name}{{{rendered}}} {value}"


class MetricsRegistry:
    """Process-local counters and HTTP latency histograms."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: Dict[str, Dict[str, int]] = {name: {} for name in COUNTER_FAMILIES}
        self._http_totals: Dict[Tuple[str, str, int], int] = {}
        self._http_latency: Dict[Tuple[str, str], _LatencyHistogram] = {}

    def increment(self, family: str, label_value: str | None) -> None:
        if family not in COUNTER_FAMILIES:
            raise KeyError(f"unknown counter family: {family}")
        key = str(label_value or "").strip() or "unknown"
        with self._lock:
            counter = self._counters[family]
            counter[key] = counter.get(key, 0) + 1

    def observe_http(self, method: str, route: str, status_code: int, duration_ms: float) -> None:
        method_key = (method or "GET").upper()
        route_key = route or "unknown"
        with self._lock:
            total_key = (method_key, route_key, int(status_code))
            self._http_totals[total_key] = self._http_totals.get(total_key, 0) + 1
            self._http_latency.setdefault((method_key, route_key), _LatencyHistogram()).observe(duration_ms)

    def snapshot(self) -> dict:
        with self._lock:
            routes: Dict[str, dict] = {}
            for (method, route, status), count in self._http_totals.items():
                summary = routes.setdefault(f"{method} {route}", {"requests": 0, "errors": 0})
                summary["requests"] += count
                if status >= 400:
                    summary["errors"] += count
            for (method, route), histogram in self._http_latency.items():
                summary = routes[f"{method} {route}"]
                summary["latency_avg_ms"] = round(histogram.total / histogram.count, 2) if histogram.count else 0.0
                summary["latency_max_ms"] = round(histogram.maximum, 2)
            return {
                "requests_total": sum(item["requests"] for item in routes.values()),
                "errors_total": sum(item["errors"] for item in routes.values()),
                "routes": routes,
                "approval_decisions": dict(self._counters["approval_decision_total"]),
            }

    def render_prometheus(self) -> str:
        with self._lock:
            lines = [
                "# HELP http_request_total Total HTTP requests by method, route and status.",
                "# TYPE http_request_total counter",
            ]
            for (method, route, status), count in sorted(self._http_totals.items()):
                lines.append(_sample("http_request_total", count, method=method, route=route, status=status))

            lines.append("# HELP http_request_duration_ms HTTP request latency in milliseconds.")
            lines.append("# TYPE http_request_duration_ms histogram")
            for (method, route), histogram in sorted(self._http_latency.items()):
                for bound, count in histogram.cumulative():
                    lines.append(_sample("http_request_duration_ms_bucket", count, method=method, route=route, le=bound))
                lines.append(_sample("http_request_duration_ms_sum", round(histogram.total, 3), method=method, route=route))
                lines.append(_sample("http_request_duration_ms_count", histogram.count, method=method, route=route))

            for family, (label, help_text) in COUNTER_FAMILIES.items():
                lines.append(f"# HELP {family} {help_text}")
                lines.append(f"# TYPE {family} counter")
                for value, count in sorted(self._counters[family].items()):
                    lines.append(_sample(family, count, **{label: value}))
        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        with self._lock:
            for counter in self._counters.values():
                counter.clear()
            self._http_totals.clear()
            self._http_latency.clear()


_METRICS = MetricsRegistry()


def mark_request_start() -> None:
    g._request_started_at = time.perf_counter()


def observe_response(response):
    started = getattr(g, "_request_started_at", None)
    elapsed_ms = (time.perf_counter() - started) * 1000.0 if started else 0.0
    route = request.url_rule.rule if request.url_rule is not None else request.path
    _METRICS.observe_http(request.method, route, response.status_code, elapsed_ms)
    response.headers["X-Response-Time-Ms"] = f"{elapsed_ms:.2f}"
    return response


def metrics_snapshot() -> dict:
    return _METRICS.snapshot()


def observe_domain_event_emitted(event_type: str) -> None:
    _METRICS.increment("domain_event_emitted_total", event_type)


def observe_domain_event_schema_invalid(schema_name: str) -> None:
    _METRICS.increment("domain_event_schema_invalid_total", schema_name)


def observe_approval_resolution(result: str) -> None:
    _METRICS.increment("approval_resolution_total", result)


def observe_approval_decision(outcome: str) -> None:
    _METRICS.increment("approval_decision_total", outcome)


def prometheus_metrics_text() -> str:
    return _METRICS.render_prometheus()


def reset_metrics_for_tests() -> None:
    _METRICS.reset()
    set_log_request_id(None)
