"""Unified metrics helpers.

Thin wrappers around prometheus_client primitives with service name
prefixing and basic naming validation. The default registry is used unless
one is passed explicitly.
"""

from __future__ import annotations

import re
from typing import Sequence

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram

_NAME_RE = re.compile(r"^[a-z_][a-z0-9_]*$")


def _validate(name: str) -> str:
    if not _NAME_RE.match(name):  # pragma: no cover - simple guard
        raise ValueError(
            f"Invalid metric name '{name}'. Use snake_case alphanumerics/underscores."
        )
    return name


def _prefix(name: str, service: str | None) -> str:
    if service and not name.startswith(service + "_"):
        return f"{service}_{name}"
    return name


def get_counter(
    name: str,
    documentation: str,
    service: str | None = None,
    labelnames: Sequence[str] = (),
    registry: CollectorRegistry = REGISTRY,
) -> Counter:
    return Counter(
        _validate(_prefix(name, service)),
        documentation,
        labelnames=labelnames,
        registry=registry,
    )


def get_histogram(
    name: str,
    documentation: str,
    service: str | None = None,
    buckets: list[float] | None = None,
    labelnames: Sequence[str] = (),
    registry: CollectorRegistry = REGISTRY,
) -> Histogram:
    full_name = _validate(_prefix(name, service))
    if buckets is None:
        return Histogram(
            full_name, documentation, labelnames=labelnames, registry=registry
        )
    return Histogram(
        full_name,
        documentation,
        labelnames=labelnames,
        buckets=buckets,
        registry=registry,
    )


def get_gauge(
    name: str,
    documentation: str,
    service: str | None = None,
    labelnames: Sequence[str] = (),
    registry: CollectorRegistry = REGISTRY,
) -> Gauge:
    return Gauge(
        _validate(_prefix(name, service)),
        documentation,
        labelnames=labelnames,
        registry=registry,
    )


__all__ = [
    "get_counter",
    "get_histogram",
    "get_gauge",
]
