"""IDTP Ingest - Replay guard, timing and the UDP ingestion pipeline."""
from .config import ClockConfig, NetConfig, PipelineConfig
from .guard import ReplayGuard, ReplayState
from .pipeline import IngestionPipeline, ValidatedSample
from .simulator import ImuSimulator
from .telemetry import IngestEvent, Telemetry
from .timing import TickClock, TimingExtractor
from .transport import Ingester, UdpSource

__all__ = [
    "ClockConfig",
    "ImuSimulator",
    "IngestEvent",
    "Ingester",
    "IngestionPipeline",
    "NetConfig",
    "PipelineConfig",
    "ReplayGuard",
    "ReplayState",
    "Telemetry",
    "TickClock",
    "TimingExtractor",
    "UdpSource",
    "ValidatedSample",
]
