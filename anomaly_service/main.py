"""Tourist anomaly service — main entry point.

This is the only file that knows about concrete implementations.
It wires together the core, queue, storage, notifier, and API layers.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from anomaly_service.api.demo import router as demo_router
from anomaly_service.api.monitoring import router as monitoring_router
from anomaly_service.api.predict import router as predict_router
from anomaly_service.api.training import router as training_router
from anomaly_service.config import AppConfig, load_config
from anomaly_service.core.detector import AnomalyDetector
from anomaly_service.core.state_store import TouristStateStore
from anomaly_service.core.stats import ServiceStats
from anomaly_service.core.training import TrainingService
from anomaly_service.notify.log_notifier import LogNotifier
from anomaly_service.queue.asyncio_queue import AsyncioVerdictQueue
from anomaly_service.storage.file_storage import FileVerdictStorage

log = structlog.get_logger()

# Module-level singletons (set during startup)
_detector: AnomalyDetector | None = None
_training: TrainingService | None = None
_stats: ServiceStats | None = None
_config: AppConfig | None = None
_train_cancel = threading.Event()
_log_file = None


def get_detector() -> AnomalyDetector:
    assert _detector is not None, "Service not initialized"
    return _detector


def get_training() -> TrainingService:
    assert _training is not None, "Service not initialized"
    return _training


def get_stats() -> ServiceStats:
    assert _stats is not None, "Service not initialized"
    return _stats


def get_config() -> AppConfig:
    assert _config is not None, "Service not initialized"
    return _config


def get_train_cancel() -> threading.Event:
    return _train_cancel


def _setup_logging(config: AppConfig) -> None:
    """Configure structlog based on the logging config."""
    global _log_file
    _close_log_file()
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if config.logging.format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=not config.logging.file))

    logger_factory = None
    if config.logging.file:
        _log_file = open(config.logging.file, "a")
        logger_factory = structlog.WriteLoggerFactory(file=_log_file)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(config.logging.level.upper()),
        ),
        logger_factory=logger_factory or structlog.PrintLoggerFactory(),
    )


def _close_log_file() -> None:
    global _log_file
    if _log_file is not None:
        structlog.configure(logger_factory=structlog.PrintLoggerFactory())
        _log_file.close()
        _log_file = None


def build_detector(config: AppConfig, stats: ServiceStats, training: TrainingService,
                   with_queue: bool = True) -> AnomalyDetector:
    store = TouristStateStore(
        capacity=config.store.history_capacity,
        moving_speed_kmh=config.store.moving_speed_kmh,
    )
    queue = AsyncioVerdictQueue(max_size=config.queue.max_size) if with_queue else None
    storage = None
    if config.storage.backend == "file":
        storage = FileVerdictStorage(base_dir=config.storage.base_dir)
    return AnomalyDetector(
        config=config,
        store=store,
        training=training,
        stats=stats,
        queue=queue,
        storage=storage,
        notifier=LogNotifier(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    global _detector, _training, _stats, _config

    _config = load_config()
    _setup_logging(_config)

    log.info("service_starting",
             env=_config.server.env,
             history_capacity=_config.store.history_capacity,
             storage_backend=_config.storage.backend)

    # Create components
    _stats = ServiceStats(active_window_seconds=_config.limits.active_window_seconds)
    _training = TrainingService(_config.model)
    if _config.model.path:
        _training.load(_config.model.path)
    _detector = build_detector(_config, _stats, _training)
    _train_cancel.clear()

    # Start background archive/dispatch consumer
    consumer_task = asyncio.create_task(_detector.run_verdict_consumer())

    log.info("service_started",
             host=_config.server.host,
             port=_config.server.port,
             model_loaded=_training.model.is_loaded)

    yield

    # Shutdown
    _train_cancel.set()
    consumer_task.cancel()
    try:
        await consumer_task
    except asyncio.CancelledError:
        pass
    _detector.close()
    log.info("service_stopped")
    _close_log_file()


app = FastAPI(
    title="Tourist Anomaly Service",
    description="Hybrid rule-based and isolation-forest anomaly detection for tourist telemetry",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(predict_router)
app.include_router(training_router)
app.include_router(monitoring_router)
app.include_router(demo_router)


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    config = load_config()
    uvicorn.run("anomaly_service.main:app", host=config.server.host, port=config.server.port)
