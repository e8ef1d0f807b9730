# src/infrastructure/generation/config.py
import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import List


def _default_cli_args() -> List[str]:
    # stream-json needs --verbose in print mode
    return ["-p", "--output-format", "stream-json", "--verbose"]


@dataclass(frozen=True)
class GenerationConfig:
    # concurrent non-terminal jobs (also caps spawned CLI processes)
    max_active_jobs: int = 4
    # hard wall-clock budget per job, from spawn
    job_timeout_sec: float = 120.0
    # SIGTERM -> SIGKILL grace on cancel/timeout
    kill_grace_sec: float = 3.0
    # terminal jobs kept this long before the sweep evicts them
    retention_sec: float = 300.0
    sweep_interval_sec: float = 30.0
    # replay ring buffer per job (chunks)
    buffer_capacity: int = 256
    # pending chunks per subscriber before it is dropped
    subscriber_queue_size: int = 1000
    # closed channels stay around for late subscribers
    channel_linger_sec: float = 30.0
    read_chunk_size: int = 4096
    stderr_tail_bytes: int = 8192
    # external CLI
    cli_command: str = "claude"
    cli_args: List[str] = field(default_factory=_default_cli_args)
    cli_model: str = "sonnet"
    # auth marker cache
    auth_cache_ttl_sec: float = 30.0
    auth_marker_path: str = str(Path.home() / ".claude" / "history.jsonl")
    # "noop" | "prom"
    metrics_backend: str = "noop"


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return default


def load_generation_config() -> GenerationConfig:
    cli_args = os.getenv("CLAUDE_CLI_ARGS")
    return GenerationConfig(
        max_active_jobs=_int_env("GEN_MAX_ACTIVE_JOBS", 4),
        job_timeout_sec=_float_env("GEN_JOB_TIMEOUT_SEC", 120.0),
        kill_grace_sec=_float_env("GEN_KILL_GRACE_SEC", 3.0),
        retention_sec=_float_env("GEN_RETENTION_SEC", 300.0),
        sweep_interval_sec=_float_env("GEN_SWEEP_INTERVAL_SEC", 30.0),
        buffer_capacity=_int_env("GEN_BUFFER_CAPACITY", 256),
        subscriber_queue_size=_int_env("GEN_SUBSCRIBER_QUEUE", 1000),
        channel_linger_sec=_float_env("GEN_CHANNEL_LINGER_SEC", 30.0),
        read_chunk_size=_int_env("GEN_READ_CHUNK_SIZE", 4096),
        stderr_tail_bytes=_int_env("GEN_STDERR_TAIL_BYTES", 8192),
        cli_command=os.getenv("CLAUDE_CLI", "claude"),
        cli_args=shlex.split(cli_args) if cli_args is not None else _default_cli_args(),
        cli_model=os.getenv("CLAUDE_MODEL", "sonnet"),
        auth_cache_ttl_sec=_float_env("AUTH_CACHE_TTL_SEC", 30.0),
        auth_marker_path=os.path.expanduser(
            os.getenv("CLAUDE_AUTH_MARKER", str(Path.home() / ".claude" / "history.jsonl"))
        ),
        metrics_backend=os.getenv("GEN_METRICS", "noop").lower(),
    )
