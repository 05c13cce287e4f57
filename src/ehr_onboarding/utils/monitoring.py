"""Prometheus metrics for connection validation runs."""

from typing import cast

from prometheus_client import REGISTRY, Counter, Histogram


def get_or_create_counter(name: str, description: str, labels: list[str]) -> Counter:
    """Get existing counter or create new one."""
    try:
        return Counter(name, description, labels)
    except ValueError as exc:
        # Metric already registered
        existing = getattr(REGISTRY, "_names_to_collectors", {}).get(name)
        if existing is None:
            raise ValueError(f"Counter {name} not found") from exc
        return cast(Counter, existing)


def get_or_create_histogram(
    name: str, description: str, labels: list[str]
) -> Histogram:
    """Get existing histogram or create new one."""
    try:
        return Histogram(name, description, labels)
    except ValueError as exc:
        existing = getattr(REGISTRY, "_names_to_collectors", {}).get(name)
        if existing is None:
            raise ValueError(f"Histogram {name} not found") from exc
        return cast(Histogram, existing)


probe_results_total = get_or_create_counter(
    "ehr_probe_results",
    "Outcomes of individual EHR validation probes",
    ["probe", "status"],
)

probe_duration_seconds = get_or_create_histogram(
    "ehr_probe_duration_seconds",
    "Wall-clock duration of EHR validation probes",
    ["probe"],
)

validation_runs_total = get_or_create_counter(
    "ehr_validation_runs",
    "Completed EHR validation runs by outcome",
    ["outcome"],
)


def record_probe(probe: str, status: str, duration: float) -> None:
    """Record a finished probe."""
    probe_results_total.labels(probe=probe, status=status).inc()
    probe_duration_seconds.labels(probe=probe).observe(duration)


def record_validation_run(passed: bool) -> None:
    """Record a finished validation run."""
    validation_runs_total.labels(outcome="passed" if passed else "failed").inc()
