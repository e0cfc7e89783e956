from __future__ import annotations

from rpcobs.config import ObservabilityConfig


try:
    from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, generate_latest
except Exception as e:  # pragma: no cover
    raise RuntimeError("prometheus_client is required (see pyproject.toml)") from e


config_loads_total = Counter(
    "rpcobs_config_loads_total",
    "Observability config load attempts by source origin and outcome.",
    labelnames=("origin", "status"),
)

observability_enabled = Gauge(
    "rpcobs_observability_enabled",
    "1 when the observability signal is enabled by the loaded config.",
    labelnames=("signal",),
)

trace_sampling_rate = Gauge(
    "rpcobs_trace_sampling_rate",
    "Effective global trace sampling rate of the loaded config.",
)


def observe_config_load(*, origin: str, status: str) -> None:
    config_loads_total.labels(origin=origin, status=status).inc()


def publish_config(config: ObservabilityConfig) -> None:
    observability_enabled.labels(signal="logging").set(1 if config.enable_cloud_logging else 0)
    observability_enabled.labels(signal="monitoring").set(1 if config.enable_cloud_monitoring else 0)
    observability_enabled.labels(signal="trace").set(1 if config.enable_cloud_trace else 0)
    trace_sampling_rate.set(config.sampling.rate)


def render_prometheus() -> tuple[bytes, str]:
    return generate_latest(), CONTENT_TYPE_LATEST
