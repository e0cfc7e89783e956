from __future__ import annotations

import enum
import json
import logging
import math
import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping, Optional, Sequence, Union

from rpcobs.errors import (
    CustomTagError,
    FieldRangeError,
    FieldTypeError,
    MalformedConfigError,
    SourceUnavailableError,
    UnknownEventTypeError,
)


logger = logging.getLogger(__name__)

# Tolerance for treating a sampling rate as 1.0.
SAMPLING_RATE_EPSILON = 1e-6

_INT_STRING_RE = re.compile(r"[+-]?[0-9]+")
_NUMBER_STRING_RE = re.compile(r"-?(0|[1-9][0-9]*)(\.[0-9]+)?([eE][+-]?[0-9]+)?")

_KNOWN_KEYS = frozenset(
    {
        "enable_cloud_logging",
        "enable_cloud_monitoring",
        "enable_cloud_trace",
        "destination_project_id",
        "flush_message_count",
        "log_filters",
        "event_types",
        "global_trace_sampling_rate",
        "custom_tags",
    }
)


class EventType(enum.Enum):
    GRPC_CALL_UNKNOWN = "GRPC_CALL_UNKNOWN"
    GRPC_CALL_REQUEST_HEADER = "GRPC_CALL_REQUEST_HEADER"
    GRPC_CALL_RESPONSE_HEADER = "GRPC_CALL_RESPONSE_HEADER"
    GRPC_CALL_REQUEST_MESSAGE = "GRPC_CALL_REQUEST_MESSAGE"
    GRPC_CALL_RESPONSE_MESSAGE = "GRPC_CALL_RESPONSE_MESSAGE"
    GRPC_CALL_TRAILER = "GRPC_CALL_TRAILER"
    GRPC_CALL_HALF_CLOSE = "GRPC_CALL_HALF_CLOSE"
    GRPC_CALL_CANCEL = "GRPC_CALL_CANCEL"

    @classmethod
    def from_name(cls, token: str, *, path: str = "event_types") -> "EventType":
        try:
            return cls(token)
        except ValueError:
            raise UnknownEventTypeError("unknown event type", field=path, value=token) from None


@dataclass(frozen=True)
class LogFilter:
    pattern: Optional[str] = None
    header_bytes: Optional[int] = None
    message_bytes: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "pattern": self.pattern,
            "header_bytes": self.header_bytes,
            "message_bytes": self.message_bytes,
        }


class SamplingKind(enum.Enum):
    NEVER = "never"
    ALWAYS = "always"
    PROBABILISTIC = "probabilistic"


@dataclass(frozen=True)
class SamplingStrategy:
    kind: SamplingKind
    rate: float

    @classmethod
    def never(cls) -> "SamplingStrategy":
        return cls(kind=SamplingKind.NEVER, rate=0.0)

    @classmethod
    def always(cls) -> "SamplingStrategy":
        return cls(kind=SamplingKind.ALWAYS, rate=1.0)

    @classmethod
    def probabilistic(cls, rate: float) -> "SamplingStrategy":
        return cls(kind=SamplingKind.PROBABILISTIC, rate=rate)

    @classmethod
    def from_rate(
        cls, rate: Optional[float], *, path: str = "global_trace_sampling_rate"
    ) -> "SamplingStrategy":
        """Derive the strategy for an optional global sampling rate.

        A rate within SAMPLING_RATE_EPSILON of 1.0 maps to always-sample, never
        to a ratio sampler.
        """
        if rate is None:
            return cls.never()
        if not (0.0 <= rate <= 1.0):
            raise FieldRangeError("must be between [0.0, 1.0]", field=path, value=rate)
        if 1.0 - rate < SAMPLING_RATE_EPSILON:
            return cls.always()
        if rate == 0.0:
            return cls.never()
        return cls.probabilistic(rate)

    def to_sampler(self) -> Any:
        try:
            from opentelemetry.sdk.trace.sampling import ALWAYS_OFF, ALWAYS_ON, TraceIdRatioBased
        except Exception as e:  # pragma: no cover
            raise RuntimeError(f"opentelemetry-sdk dependency unavailable: {e}") from e

        if self.kind is SamplingKind.ALWAYS:
            return ALWAYS_ON
        if self.kind is SamplingKind.NEVER:
            return ALWAYS_OFF
        return TraceIdRatioBased(self.rate)


@dataclass(frozen=True)
class ObservabilityConfig:
    enable_cloud_logging: bool = False
    enable_cloud_monitoring: bool = False
    enable_cloud_trace: bool = False
    destination_project_id: Optional[str] = None
    flush_message_count: Optional[int] = None
    log_filters: Optional[Sequence[LogFilter]] = None
    event_types: Optional[Sequence[EventType]] = None
    sampling: SamplingStrategy = SamplingStrategy.never()
    custom_tags: Optional[Mapping[str, str]] = None

    @classmethod
    def defaults(cls) -> "ObservabilityConfig":
        return cls()

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serialisable view, safe to print."""
        return {
            "enable_cloud_logging": self.enable_cloud_logging,
            "enable_cloud_monitoring": self.enable_cloud_monitoring,
            "enable_cloud_trace": self.enable_cloud_trace,
            "destination_project_id": self.destination_project_id,
            "flush_message_count": self.flush_message_count,
            "log_filters": None if self.log_filters is None else [f.to_dict() for f in self.log_filters],
            "event_types": None if self.event_types is None else [e.value for e in self.event_types],
            "sampling": {"kind": self.sampling.kind.value, "rate": self.sampling.rate},
            "custom_tags": None if self.custom_tags is None else dict(self.custom_tags),
        }

    def __hash__(self) -> int:
        # custom_tags is a read-only mapping; hash its items.
        tags = None if self.custom_tags is None else frozenset(self.custom_tags.items())
        return hash(
            (
                self.enable_cloud_logging,
                self.enable_cloud_monitoring,
                self.enable_cloud_trace,
                self.destination_project_id,
                self.flush_message_count,
                None if self.log_filters is None else tuple(self.log_filters),
                None if self.event_types is None else tuple(self.event_types),
                self.sampling,
                tags,
            )
        )


def _require_dict(obj: Any, *, path: str) -> dict[str, Any]:
    if not isinstance(obj, dict):
        raise FieldTypeError("must be a mapping", field=path, value=obj)
    return obj


def _require_list(obj: Any, *, path: str) -> list[Any]:
    if not isinstance(obj, list):
        raise FieldTypeError("must be a list", field=path, value=obj)
    return obj


def _require_str(obj: Any, *, path: str) -> str:
    if not isinstance(obj, str):
        raise FieldTypeError("must be a string", field=path, value=obj)
    return obj


def _require_bool(obj: Any, *, path: str) -> bool:
    if not isinstance(obj, bool):
        raise FieldTypeError("must be a boolean", field=path, value=obj)
    return obj


def _require_int(obj: Any, *, path: str, bits: int) -> int:
    # Integral floats and base-10 strings are accepted.
    if isinstance(obj, bool):
        raise FieldTypeError("must be an integer", field=path, value=obj)
    if isinstance(obj, int):
        value = obj
    elif isinstance(obj, float):
        if not math.isfinite(obj) or not obj.is_integer():
            raise FieldTypeError("must be an integer", field=path, value=obj)
        value = int(obj)
    elif isinstance(obj, str) and _INT_STRING_RE.fullmatch(obj):
        try:
            value = int(obj, 10)
        except ValueError:
            raise FieldRangeError("integer string is too long", field=path, value=obj) from None
    else:
        raise FieldTypeError("must be an integer", field=path, value=obj)

    lo = -(1 << (bits - 1))
    hi = (1 << (bits - 1)) - 1
    if not lo <= value <= hi:
        raise FieldRangeError(f"must fit in a signed {bits}-bit integer", field=path, value=obj)
    return value


def _require_number(obj: Any, *, path: str) -> float:
    if isinstance(obj, bool):
        raise FieldTypeError("must be a number", field=path, value=obj)
    try:
        if isinstance(obj, (int, float)):
            return float(obj)
        if isinstance(obj, str) and _NUMBER_STRING_RE.fullmatch(obj):
            return float(obj)
    except OverflowError:
        raise FieldRangeError("number is too large", field=path, value=obj) from None
    except ValueError:
        raise FieldTypeError("must be a number", field=path, value=obj) from None
    raise FieldTypeError("must be a number", field=path, value=obj)


def _parse_log_filter(obj: Any, *, path: str) -> LogFilter:
    obj = _require_dict(obj, path=path)
    pattern = None
    header_bytes = None
    message_bytes = None
    if "pattern" in obj:
        pattern = _require_str(obj["pattern"], path=f"{path}.pattern")
    if "header_bytes" in obj:
        header_bytes = _require_int(obj["header_bytes"], path=f"{path}.header_bytes", bits=32)
    if "message_bytes" in obj:
        message_bytes = _require_int(obj["message_bytes"], path=f"{path}.message_bytes", bits=32)
    return LogFilter(pattern=pattern, header_bytes=header_bytes, message_bytes=message_bytes)


def _parse_custom_tags(obj: Any, *, path: str) -> Mapping[str, str]:
    obj = _require_dict(obj, path=path)
    out: dict[str, str] = {}
    for k, v in obj.items():
        if not isinstance(v, str):
            raise CustomTagError("must be a map of <string, string>", field=f"{path}.{k}", value=v)
        out[k] = v
    return MappingProxyType(out)


def parse_config_tree(tree: Mapping[str, Any]) -> ObservabilityConfig:
    cfg = _require_dict(tree, path="config")

    unknown = sorted(k for k in cfg if k not in _KNOWN_KEYS)
    if unknown:
        logger.debug("ignoring unknown observability config keys: %s", ", ".join(unknown))

    enable_cloud_logging = False
    if "enable_cloud_logging" in cfg:
        enable_cloud_logging = _require_bool(cfg["enable_cloud_logging"], path="enable_cloud_logging")
    enable_cloud_monitoring = False
    if "enable_cloud_monitoring" in cfg:
        enable_cloud_monitoring = _require_bool(
            cfg["enable_cloud_monitoring"], path="enable_cloud_monitoring"
        )
    enable_cloud_trace = False
    if "enable_cloud_trace" in cfg:
        enable_cloud_trace = _require_bool(cfg["enable_cloud_trace"], path="enable_cloud_trace")

    destination_project_id = None
    if "destination_project_id" in cfg:
        destination_project_id = _require_str(cfg["destination_project_id"], path="destination_project_id")

    flush_message_count = None
    if "flush_message_count" in cfg:
        flush_message_count = _require_int(cfg["flush_message_count"], path="flush_message_count", bits=64)

    log_filters = None
    if "log_filters" in cfg:
        raw_filters = _require_list(cfg["log_filters"], path="log_filters")
        log_filters = tuple(
            _parse_log_filter(item, path=f"log_filters[{i}]") for i, item in enumerate(raw_filters)
        )

    event_types = None
    if "event_types" in cfg:
        raw_events = _require_list(cfg["event_types"], path="event_types")
        event_types = tuple(
            EventType.from_name(_require_str(item, path=f"event_types[{i}]"), path=f"event_types[{i}]")
            for i, item in enumerate(raw_events)
        )

    sampling_rate = None
    if "global_trace_sampling_rate" in cfg:
        sampling_rate = _require_number(cfg["global_trace_sampling_rate"], path="global_trace_sampling_rate")
    sampling = SamplingStrategy.from_rate(sampling_rate)

    custom_tags = None
    if "custom_tags" in cfg:
        custom_tags = _parse_custom_tags(cfg["custom_tags"], path="custom_tags")

    return ObservabilityConfig(
        enable_cloud_logging=enable_cloud_logging,
        enable_cloud_monitoring=enable_cloud_monitoring,
        enable_cloud_trace=enable_cloud_trace,
        destination_project_id=destination_project_id,
        flush_message_count=flush_message_count,
        log_filters=log_filters,
        event_types=event_types,
        sampling=sampling,
        custom_tags=custom_tags,
    )


def _reject_constant(token: str) -> Any:
    raise MalformedConfigError(f"invalid JSON token: {token}")


def parse_config_text(text: Union[str, bytes, None]) -> ObservabilityConfig:
    if text is None:
        raise SourceUnavailableError("observability config text is null")
    if isinstance(text, bytes):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedConfigError(f"config is not valid UTF-8: {e}") from e

    try:
        tree = json.loads(text, parse_constant=_reject_constant)
    except MalformedConfigError:
        raise
    except RecursionError as e:
        raise MalformedConfigError("config nesting is too deep") from e
    except ValueError as e:
        raise MalformedConfigError(f"config is not valid JSON: {e}") from e

    if tree is None:
        return ObservabilityConfig.defaults()
    return parse_config_tree(tree)
