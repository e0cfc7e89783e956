from __future__ import annotations

from typing import Optional

from rpcobs.config import ObservabilityConfig


try:
    from opentelemetry import trace
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
except Exception as e:  # pragma: no cover
    raise RuntimeError("opentelemetry-sdk is required (see pyproject.toml)") from e


_initialized = False
_provider: Optional[TracerProvider] = None


def build_resource(*, config: ObservabilityConfig, service_name: str) -> Resource:
    attributes: dict[str, str] = {}
    if config.custom_tags:
        attributes.update(config.custom_tags)
    if config.destination_project_id:
        attributes["gcp.project_id"] = config.destination_project_id
    attributes["service.name"] = service_name
    return Resource.create(attributes)


def build_tracer_provider(*, config: ObservabilityConfig, service_name: str) -> Optional[TracerProvider]:
    if not config.enable_cloud_trace:
        return None
    return TracerProvider(
        sampler=config.sampling.to_sampler(),
        resource=build_resource(config=config, service_name=service_name),
    )


def init_tracing(*, config: ObservabilityConfig, service_name: str) -> Optional[TracerProvider]:
    """Install the tracer provider for `config` once per process."""
    global _initialized, _provider
    if _initialized:
        return _provider

    _initialized = True
    _provider = build_tracer_provider(config=config, service_name=service_name)
    if _provider is not None:
        trace.set_tracer_provider(_provider)
    return _provider


def reset_tracing_for_tests() -> None:
    global _initialized, _provider
    _initialized = False
    _provider = None
