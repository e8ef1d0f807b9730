# src/infrastructure/generation/__init__.py
from infrastructure.generation.auth import CliAuthCache, marker_file_probe
from infrastructure.generation.broker import StreamBroker, StreamChannel, Subscription
from infrastructure.generation.cli_output import CliOutput, StreamJsonOutput, detect_output_format, make_cli_output
from infrastructure.generation.config import GenerationConfig, load_generation_config
from infrastructure.generation.errors import (
    AlreadyRunning,
    CapacityExceeded,
    GenerationError,
    InvalidRequest,
    InvalidTransition,
    NotFound,
    Unauthorized,
)
from infrastructure.generation.metrics import GenerationMetrics, NoopGenerationMetrics, PrometheusGenerationMetrics
from infrastructure.generation.models import (
    ExitReason,
    GenerationJob,
    JobState,
    RegistrySnapshot,
    TERMINAL_STATES,
    TokenUsage,
)
from .registry import JobRegistry
from .supervisor import ProcessSupervisor

__all__ = [
    "GenerationConfig",
    "load_generation_config",
    "JobState",
    "ExitReason",
    "GenerationJob",
    "RegistrySnapshot",
    "TokenUsage",
    "TERMINAL_STATES",
    "GenerationError",
    "InvalidRequest",
    "Unauthorized",
    "NotFound",
    "CapacityExceeded",
    "InvalidTransition",
    "AlreadyRunning",
    "JobRegistry",
    "StreamBroker",
    "StreamChannel",
    "Subscription",
    "ProcessSupervisor",
    "CliOutput",
    "StreamJsonOutput",
    "detect_output_format",
    "make_cli_output",
    "CliAuthCache",
    "marker_file_probe",
    "GenerationMetrics",
    "NoopGenerationMetrics",
    "PrometheusGenerationMetrics",
]
