"""Pipeline bootstrap and the process-wide tracer provider."""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional, Union

from opentelemetry.sdk.resources import SERVICE_NAME, Resource

from spanline.config import SpanlineConfig, load_config
from spanline.errors import InitializationError
from spanline.exporter.base import SpanExporter
from spanline.exporter.console_exporter import ConsoleExporter
from spanline.exporter.memory_exporter import InMemorySpanExporter
from spanline.exporter.otlp_exporter import OTLPExporter
from spanline.exporter.queued_exporter import QueuedExporter
from spanline.processors.backpressure import BackpressureController
from spanline.processors.base import SpanProcessor
from spanline.processors.batch_processor import BatchSpanProcessor
from spanline.processors.load_shedding import LoadSheddingFilter
from spanline.processors.memory_guard import MemoryGuard
from spanline.processors.sampler import sampler_from_config
from spanline.processors.simple_processor import SimpleSpanProcessor
from spanline.tracer.provider import NoOpTracerProvider, TracerProvider
from spanline.tracer.tracer import NoOpTracer, Tracer

logger = logging.getLogger(__name__)

_lock = threading.Lock()
_provider: Union[TracerProvider, NoOpTracerProvider] = NoOpTracerProvider()


def get_tracer_provider() -> Union[TracerProvider, NoOpTracerProvider]:
    return _provider


def set_tracer_provider(provider: Union[TracerProvider, NoOpTracerProvider]) -> None:
    """Install ``provider`` as the global provider. The previous one is not shut down."""
    global _provider
    with _lock:
        _provider = provider


def get_tracer(name: str = "spanline", version: Optional[str] = None) -> Union[Tracer, NoOpTracer]:
    """Tracer from the global provider (a no-op tracer until ``init()`` runs)."""
    return _provider.get_tracer(name, version)


def _build_sink(config: SpanlineConfig) -> Optional[SpanExporter]:
    exporter_config = config.exporter
    if exporter_config.kind == "none":
        return None
    if exporter_config.kind == "console":
        return ConsoleExporter()
    if exporter_config.kind == "memory":
        return InMemorySpanExporter()
    return OTLPExporter(
        endpoint=exporter_config.endpoint,
        api_key=exporter_config.api_key,
        timeout=exporter_config.timeout,
        headers=exporter_config.headers,
    )


def _build_resource(config: SpanlineConfig) -> Resource:
    attributes: Dict[str, Any] = dict(config.resource_attributes)
    if config.service_name:
        attributes[SERVICE_NAME] = config.service_name
    return Resource.create(attributes)


def _build_backpressure(config: SpanlineConfig) -> Optional[BackpressureController]:
    bp = config.backpressure
    if not bp.enabled:
        return None
    memory_guard = None
    if bp.memory_limit_mib:
        memory_guard = MemoryGuard.from_mib(bp.memory_limit_mib, check_interval=bp.memory_check_interval)
    return BackpressureController(
        high_water_mark=bp.high_water_mark,
        shedding_ratio=bp.shedding_ratio,
        load_shedding=LoadSheddingFilter(bp.low_priority_span_names),
        memory_guard=memory_guard,
    )


def build_pipeline(config: SpanlineConfig, exporter: Optional[SpanExporter] = None) -> TracerProvider:
    """
    Build a TracerProvider from configuration without installing it.

    The batch processor hands batches to a QueuedExporter in front of the
    sink; the simple processor calls the sink directly. ``exporter``
    replaces the configured sink.
    """
    sink = exporter if exporter is not None else _build_sink(config)
    backpressure = _build_backpressure(config)

    provider = TracerProvider(
        resource=_build_resource(config),
        sampler=sampler_from_config(config.sampler.kind, config.sampler.ratio),
        backpressure=backpressure,
    )
    if sink is None:
        logger.info("No exporter configured; spans will not leave the process")
        return provider

    processor_config = config.processor
    processor: SpanProcessor
    if processor_config.kind == "simple":
        processor = SimpleSpanProcessor(sink, export_timeout_millis=processor_config.export_timeout_millis)
    else:
        queued = QueuedExporter(
            sink,
            queue_capacity=config.exporter.queue_capacity,
            num_workers=config.exporter.num_workers,
            timeout=config.exporter.timeout,
            retry_policy=config.exporter.retry.to_policy(),
        )
        if backpressure is not None:
            backpressure.watch(lambda: queued.fill_ratio)
        processor = BatchSpanProcessor(
            queued,
            max_queue_size=processor_config.max_queue_size,
            max_export_batch_size=processor_config.max_export_batch_size,
            schedule_delay_millis=processor_config.schedule_delay_millis,
            export_timeout_millis=processor_config.export_timeout_millis,
        )
    provider.add_span_processor(processor)
    return provider


def init(
    config: Optional[SpanlineConfig] = None,
    *,
    config_file: Optional[str] = None,
    exporter: Optional[SpanExporter] = None,
    **overrides: Any,
) -> TracerProvider:
    """
    Configure the pipeline and install it as the global provider.

    Args:
        config: Ready-made configuration; skips file and environment loading
        config_file: TOML file to load (searched for when omitted)
        exporter: Sink to use instead of the configured one
        **overrides: Highest-priority settings, e.g. ``service_name="api"``
            or ``sampler={"kind": "traceidratio", "ratio": 0.1}``

    Raises:
        ConfigError: invalid configuration
        InitializationError: the pipeline could not be built
    """
    if config is None:
        config = load_config(config_file=config_file, overrides=overrides)

    if config.debug:
        logging.getLogger("spanline").setLevel(logging.DEBUG)

    try:
        provider = build_pipeline(config, exporter=exporter)
    except (ValueError, OSError) as e:
        raise InitializationError(f"Failed to build tracing pipeline: {e}") from e

    global _provider
    with _lock:
        previous, _provider = _provider, provider
    if isinstance(previous, TracerProvider):
        logger.warning("spanline.init() called again; shutting down the previous pipeline")
        previous.shutdown()

    logger.debug(
        f"Tracing initialized: sampler={config.sampler.kind} processor={config.processor.kind} "
        f"exporter={'custom' if exporter is not None else config.exporter.kind}"
    )
    return provider


def stop_tracing(timeout_millis: int = 30000) -> None:
    """Flush and shut down the global pipeline, then fall back to the no-op provider."""
    global _provider
    with _lock:
        provider, _provider = _provider, NoOpTracerProvider()
    provider.shutdown(timeout_millis)
