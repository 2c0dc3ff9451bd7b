"""Configuration loading: defaults, TOML file, environment and explicit overrides.

Sources are merged lowest to highest priority::

    defaults < config file < environment < explicit overrides

The file uses one table per pipeline stage::

    service_name = "checkout"
    debug = false

    [resource_attributes]
    "deployment.environment" = "prod"

    [sampler]
    kind = "parentbased_traceidratio"
    ratio = 0.1

    [processor]
    kind = "batch"
    max_queue_size = 2048

    [exporter]
    kind = "otlp"
    endpoint = "http://collector:4318/v1/traces"

    [exporter.retry]
    max_elapsed_time = 60

    [backpressure]
    memory_limit_mib = 512
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from spanline.errors import ConfigError
from spanline.exporter.retry import RetryPolicy
from spanline.processors.load_shedding import DEFAULT_LOW_PRIORITY_NAMES
from spanline.processors.sampler import SAMPLER_KINDS

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "spanline.toml"
HOME_CONFIG_FILE_NAME = ".spanline.toml"


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid")


class SamplerConfig(_Section):
    kind: str = "parentbased_always_on"
    ratio: float = Field(default=1.0, ge=0.0, le=1.0)

    @field_validator("kind")
    @classmethod
    def validate_kind(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in SAMPLER_KINDS:
            raise ValueError(f"unknown sampler '{v}', expected one of {', '.join(SAMPLER_KINDS)}")
        return v


class ProcessorConfig(_Section):
    kind: Literal["batch", "simple"] = "batch"
    max_queue_size: int = Field(default=2048, gt=0)
    max_export_batch_size: int = Field(default=512, gt=0)
    schedule_delay_millis: int = Field(default=5000, gt=0)
    export_timeout_millis: int = Field(default=30000, gt=0)

    @model_validator(mode="after")
    def check_batch_size(self) -> "ProcessorConfig":
        if self.max_export_batch_size <= self.max_queue_size:
            return self
        if "max_export_batch_size" in self.model_fields_set:
            raise ValueError("max_export_batch_size must be less than or equal to max_queue_size")
        # Only the queue size was given: shrink the default batch to fit.
        self.max_export_batch_size = self.max_queue_size
        return self


class RetryConfig(_Section):
    enabled: bool = True
    initial_interval: float = Field(default=5.0, gt=0.0)
    max_interval: float = Field(default=30.0, gt=0.0)
    max_elapsed_time: float = Field(default=300.0, ge=0.0)
    multiplier: float = Field(default=1.5, ge=1.0)
    randomization_factor: float = Field(default=0.0, ge=0.0, lt=1.0)

    @model_validator(mode="after")
    def check_intervals(self) -> "RetryConfig":
        if self.max_interval < self.initial_interval:
            raise ValueError("max_interval must be >= initial_interval")
        return self

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            initial_interval=self.initial_interval,
            max_interval=self.max_interval,
            max_elapsed_time=self.max_elapsed_time,
            multiplier=self.multiplier,
            randomization_factor=self.randomization_factor,
            enabled=self.enabled,
        )


class ExporterConfig(_Section):
    kind: Literal["otlp", "console", "memory", "none"] = "otlp"
    endpoint: Optional[str] = None
    api_key: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    queue_capacity: int = Field(default=1000, gt=0)
    num_workers: int = Field(default=2, gt=0)
    timeout: float = Field(default=10.0, gt=0.0)
    retry: RetryConfig = Field(default_factory=RetryConfig)


class BackpressureConfig(_Section):
    enabled: bool = True
    high_water_mark: float = Field(default=0.8, gt=0.0, le=1.0)
    shedding_ratio: float = Field(default=0.25, ge=0.0, le=1.0)
    low_priority_span_names: List[str] = Field(default_factory=lambda: list(DEFAULT_LOW_PRIORITY_NAMES))
    memory_limit_mib: Optional[int] = Field(default=None, gt=0)
    memory_check_interval: float = Field(default=1.0, ge=0.0)


class SpanlineConfig(_Section):
    """Complete pipeline configuration."""

    service_name: Optional[str] = None
    resource_attributes: Dict[str, Any] = Field(default_factory=dict)
    debug: bool = False
    sampler: SamplerConfig = Field(default_factory=SamplerConfig)
    processor: ProcessorConfig = Field(default_factory=ProcessorConfig)
    exporter: ExporterConfig = Field(default_factory=ExporterConfig)
    backpressure: BackpressureConfig = Field(default_factory=BackpressureConfig)


# (environment variable, section, field). Later entries win, so SPANLINE_*
# variables override their OTEL_* counterparts.
_ENV_VARS = (
    ("OTEL_SERVICE_NAME", None, "service_name"),
    ("OTEL_TRACES_SAMPLER", "sampler", "kind"),
    ("OTEL_TRACES_SAMPLER_ARG", "sampler", "ratio"),
    ("OTEL_BSP_MAX_QUEUE_SIZE", "processor", "max_queue_size"),
    ("OTEL_BSP_MAX_EXPORT_BATCH_SIZE", "processor", "max_export_batch_size"),
    ("OTEL_BSP_SCHEDULE_DELAY", "processor", "schedule_delay_millis"),
    ("OTEL_BSP_EXPORT_TIMEOUT", "processor", "export_timeout_millis"),
    ("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT", "exporter", "endpoint"),
    ("SPANLINE_SERVICE_NAME", None, "service_name"),
    ("SPANLINE_DEBUG", None, "debug"),
    ("SPANLINE_SAMPLER", "sampler", "kind"),
    ("SPANLINE_SAMPLER_RATIO", "sampler", "ratio"),
    ("SPANLINE_PROCESSOR", "processor", "kind"),
    ("SPANLINE_MAX_QUEUE_SIZE", "processor", "max_queue_size"),
    ("SPANLINE_MAX_EXPORT_BATCH_SIZE", "processor", "max_export_batch_size"),
    ("SPANLINE_SCHEDULE_DELAY_MILLIS", "processor", "schedule_delay_millis"),
    ("SPANLINE_EXPORTER", "exporter", "kind"),
    ("SPANLINE_ENDPOINT", "exporter", "endpoint"),
    ("SPANLINE_API_KEY", "exporter", "api_key"),
    ("SPANLINE_QUEUE_CAPACITY", "exporter", "queue_capacity"),
    ("SPANLINE_NUM_WORKERS", "exporter", "num_workers"),
    ("SPANLINE_EXPORT_TIMEOUT", "exporter", "timeout"),
    ("SPANLINE_HIGH_WATER_MARK", "backpressure", "high_water_mark"),
    ("SPANLINE_SHEDDING_RATIO", "backpressure", "shedding_ratio"),
    ("SPANLINE_MEMORY_LIMIT_MIB", "backpressure", "memory_limit_mib"),
)


def load_toml_config(path: str) -> Dict[str, Any]:
    """
    Load configuration from a TOML file.

    Returns an empty dict when the file does not exist; raises ConfigError
    when it cannot be parsed.
    """
    config_path = Path(path).expanduser()
    if not config_path.is_file():
        return {}
    try:
        with config_path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {config_path}: {e}", details={"path": str(config_path)}) from e
    except OSError as e:
        raise ConfigError(f"Cannot read config file {config_path}: {e}", details={"path": str(config_path)}) from e


def find_config_file() -> Optional[str]:
    """Look for ``spanline.toml`` in the working directory, then ``~/.spanline.toml``."""
    candidates = (
        Path.cwd() / CONFIG_FILE_NAME,
        Path.home() / HOME_CONFIG_FILE_NAME,
    )
    for candidate in candidates:
        if candidate.is_file():
            return str(candidate)
    return None


def load_config_from_env(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """
    Collect configuration from environment variables.

    Only variables that are set (and not blank) appear in the result. Values
    stay strings; type conversion happens during validation.
    """
    environ = os.environ if environ is None else environ
    result: Dict[str, Any] = {}
    for var, section, key in _ENV_VARS:
        value = environ.get(var)
        if value is None or not value.strip():
            continue
        target = result if section is None else result.setdefault(section, {})
        target[key] = value.strip()
    return result


def merge_config(base: Dict[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """Deep-merge ``override`` into a copy of ``base``."""
    merged = dict(base)
    for key, value in override.items():
        if value is None:
            continue
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = merge_config(dict(merged[key]), value)
        else:
            merged[key] = value
    return merged


def validate_config(data: Mapping[str, Any]) -> SpanlineConfig:
    try:
        return SpanlineConfig.model_validate(dict(data))
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}", details={"error_count": e.error_count()}) from e


def load_config(
    config_file: Optional[str] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> SpanlineConfig:
    """
    Build the effective configuration.

    Args:
        config_file: Explicit TOML path; searched for when omitted
        overrides: Explicit settings, highest priority (nested dicts per section)
        environ: Environment mapping, ``os.environ`` by default

    Raises:
        ConfigError: if the file cannot be parsed or a value is invalid
    """
    data: Dict[str, Any] = {}
    path = config_file or find_config_file()
    if path:
        logger.debug(f"Loading config file {path}")
        data = merge_config(data, load_toml_config(path))
    data = merge_config(data, load_config_from_env(environ))
    if overrides:
        data = merge_config(data, overrides)
    return validate_config(data)
