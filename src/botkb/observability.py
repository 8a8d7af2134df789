"""Metrics helpers that log every sample and optionally export to Prometheus."""

from __future__ import annotations

from contextlib import contextmanager
import logging
import re
import time
from typing import Any

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

_PROM_NAME_RE = re.compile(r"[^a-zA-Z0-9_]")

_PROM_TYPES = {
    "counter": (Counter, "counter"),
    "gauge": (Gauge, "gauge"),
    "histogram": (Histogram, "duration"),
}


class MetricsRecorder:
    """Emit structured metrics via logging and (optionally) Prometheus."""

    def __init__(
        self,
        *,
        enabled: bool = True,
        namespace: str = "botkb",
        logger: logging.Logger | None = None,
        prometheus_enabled: bool = False,
        registry: CollectorRegistry | None = None,
    ) -> None:
        self._enabled = enabled
        self._namespace = namespace.strip() or "botkb"
        self._logger = logger or logging.getLogger("botkb.metrics")
        self._prometheus_enabled = prometheus_enabled
        if registry is None and prometheus_enabled:
            registry = CollectorRegistry()
        self._registry = registry
        self._collectors: dict[tuple[str, str, tuple[str, ...]], Any] = {}

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def prometheus_enabled(self) -> bool:
        return self._prometheus_enabled and self._registry is not None

    @property
    def prometheus_registry(self) -> CollectorRegistry | None:
        return self._registry

    @property
    def prometheus_content_type(self) -> str:
        return CONTENT_TYPE_LATEST

    def render_prometheus(self) -> bytes:
        if not self.prometheus_enabled:
            raise RuntimeError("Prometheus export is disabled")
        return generate_latest(self._registry)

    def increment(self, metric: str, *, value: int = 1, **tags: Any) -> None:
        """Increment a counter metric."""

        if not self._enabled:
            return
        tags = self._clean(tags)
        self._emit(metric, {"value": int(value)}, tags)
        self._observe("counter", metric, tags, lambda collector: collector.inc(float(max(int(value), 0))))

    def set_gauge(self, metric: str, value: float, **tags: Any) -> None:
        if not self._enabled:
            return
        tags = self._clean(tags)
        self._emit(metric, {"value": value}, tags)
        self._observe("gauge", metric, tags, lambda collector: collector.set(float(value)))

    def record_timing(self, metric: str, duration_seconds: float, **tags: Any) -> None:
        """Emit a timing metric, logging milliseconds and exporting seconds."""

        if not self._enabled:
            return
        seconds = max(duration_seconds, 0.0)
        tags = self._clean(tags)
        self._emit(metric, {"duration_ms": round(seconds * 1000.0, 4)}, tags)
        self._observe("histogram", metric, tags, lambda collector: collector.observe(seconds))

    @contextmanager
    def track_timing(self, metric: str, **tags: Any):
        """Record how long the wrapped block took, even when it raises."""

        if not self._enabled:
            yield
            return
        start = time.perf_counter()
        try:
            yield
        finally:
            self.record_timing(metric, time.perf_counter() - start, **tags)

    @staticmethod
    def _clean(tags: dict[str, Any]) -> dict[str, Any]:
        return {key: value for key, value in tags.items() if value is not None}

    def _emit(self, metric: str, fields: dict[str, Any], tags: dict[str, Any]) -> None:
        segments = [f"{key}={self._stringify(value)}" for key, value in sorted(fields.items())]
        segments.extend(f"{key}={self._stringify(value)}" for key, value in sorted(tags.items()))
        message = f"{self._namespace}.{metric}"
        if segments:
            message = f"{message} {' '.join(segments)}"
        self._logger.info(message)

    def _observe(self, kind: str, metric: str, tags: dict[str, Any], update) -> None:
        if not self.prometheus_enabled:
            return
        label_keys = tuple(sorted(tags))
        label_names = tuple(_PROM_NAME_RE.sub("_", key) or "label" for key in label_keys)
        cache_key = (kind, metric, label_names)
        collector = self._collectors.get(cache_key)
        if collector is None:
            factory, description = _PROM_TYPES[kind]
            collector = factory(
                self._prom_metric_name(metric),
                f"{metric} {description}",
                labelnames=list(label_names),
                registry=self._registry,
            )
            self._collectors[cache_key] = collector
        if label_names:
            collector = collector.labels(
                **{name: self._stringify(tags[key]) for name, key in zip(label_names, label_keys)}
            )
        update(collector)

    def _prom_metric_name(self, metric: str) -> str:
        cleaned = _PROM_NAME_RE.sub("_", metric)
        return f"{_PROM_NAME_RE.sub('_', self._namespace)}_{cleaned}".strip("_")

    @staticmethod
    def _stringify(value: Any) -> str:
        if isinstance(value, float):
            return f"{int(value)}" if value.is_integer() else f"{value:.4f}"
        if hasattr(value, "value") and isinstance(getattr(value, "value"), str):
            return value.value
        return str(value)


__all__ = ["MetricsRecorder"]
