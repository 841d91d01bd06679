from __future__ import annotations

import logging
import math
import shlex
import subprocess
from typing import List, Optional

from ..errors import ToolInvocationError
from ..types import GPUMetric

log = logging.getLogger(__name__)

QUERY_FIELDS = [
    "index",
    "utilization.gpu",
    "memory.used",
    "memory.total",
    "temperature.gpu",
    "power.draw",
]
NVIDIA_SMI_CMD = f"nvidia-smi --query-gpu={','.join(QUERY_FIELDS)} --format=csv,noheader,nounits"

FIELD_SEP = ", "
NOT_AVAILABLE = "N/A"
MIN_FIELDS = 4

# -----------------------------
# Helpers
# -----------------------------

def _int_or(value: str, default: int = 0) -> int:
    try:
        return int(value.strip())
    except ValueError:
        return default


def _optional(fields: List[str], pos: int) -> Optional[str]:
    """Return the trimmed column at `pos`, or None if absent, blank or N/A."""
    if len(fields) <= pos:
        return None
    value = fields[pos].strip()
    if not value or value == NOT_AVAILABLE:
        return None
    return value


def _truncated_float(value: str) -> int:
    """'120.9' -> 120, '-3.5' -> -3; anything unparsable -> 0."""
    try:
        number = float(value)
    except ValueError:
        return 0
    if not math.isfinite(number):
        return 0
    return int(number)

# -----------------------------
# Public API
# -----------------------------

def call_nvidia_smi(cmd: str = NVIDIA_SMI_CMD, timeout: int = 10) -> str:
    """Run `nvidia-smi` and return its CSV output.

    Raises ToolInvocationError when the binary is missing, times out or exits
    non-zero; the caller abandons the current cycle.
    """
    try:
        proc = subprocess.run(
            shlex.split(cmd),
            check=False,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",  # stray bytes only spoil the field they land in
            timeout=timeout,
        )
    except FileNotFoundError as exc:
        raise ToolInvocationError(f"failed to run nvidia-smi: {exc}") from exc
    except subprocess.TimeoutExpired as exc:
        raise ToolInvocationError(f"nvidia-smi timed out after {timeout}s") from exc
    except OSError as exc:
        raise ToolInvocationError(f"failed to run nvidia-smi: {exc}") from exc

    if proc.returncode != 0:
        raise ToolInvocationError(
            f"nvidia-smi exited with status {proc.returncode}: {proc.stderr.strip()}"
        )
    return proc.stdout


def parse_line(line: str) -> Optional[GPUMetric]:
    """Parse one `--format=csv,noheader,nounits` row.

    Returns None when the row is unusable (too few columns or a bad index).
    Every other column is lenient: a value that does not parse stays 0.
    """
    fields = line.split(FIELD_SEP)
    if len(fields) < MIN_FIELDS:
        log.warning("unexpected nvidia-smi output format: %s", line)
        return None

    try:
        index = int(fields[0].strip())
    except ValueError:
        log.warning("invalid GPU index: %s", fields[0])
        return None

    metric = GPUMetric(
        index=index,
        utilization_percent=_int_or(fields[1]),
        memory_used_mb=_int_or(fields[2]),
        memory_total_mb=_int_or(fields[3]),
    )

    # temperature and power are not reported by every board
    temp = _optional(fields, 4)
    if temp is not None:
        metric.temperature_celsius = _int_or(temp)

    power = _optional(fields, 5)
    if power is not None:
        metric.power_draw_watts = _truncated_float(power)

    return metric


def parse_output(text: str) -> List[GPUMetric]:
    """Parse the whole tool output; rows keep nvidia-smi's device order."""
    metrics: List[GPUMetric] = []
    for line in text.strip().splitlines():
        if not line:
            continue
        metric = parse_line(line)
        if metric is not None:
            metrics.append(metric)
    return metrics


def collect_once(cmd: str = NVIDIA_SMI_CMD) -> List[GPUMetric]:
    """Convenience: call `nvidia-smi` and parse into records."""
    return parse_output(call_nvidia_smi(cmd=cmd))
