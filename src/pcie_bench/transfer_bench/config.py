from __future__ import annotations

import attrs

DEFAULT_SIZE_MB: int = 256
DEFAULT_ITERATIONS: int = 10
DEFAULT_DEVICE: int = 0

# Untimed copies issued before every timed phase.
WARMUP_ITERATIONS: int = 3

# Small-copy latency test (opt-in).
LATENCY_SIZE_BYTES: int = 1
LATENCY_ITERATIONS: int = 1000

BYTES_PER_MIB: int = 1024 * 1024
BYTES_PER_GIB: int = 1024 * 1024 * 1024

# Report heuristics.
SYMMETRY_TOLERANCE: float = 0.10
CONTENTION_RETENTION_THRESHOLD: float = 0.70
ROUND_TRIP_ASYMMETRY_THRESHOLD: float = 1.5


def _positive(_inst: object, attribute: attrs.Attribute, value: int) -> None:
    if value <= 0:
        raise ValueError(f"{attribute.name} must be > 0, got {value}")


def _non_negative(_inst: object, attribute: attrs.Attribute, value: int) -> None:
    if value < 0:
        raise ValueError(f"{attribute.name} must be >= 0, got {value}")


@attrs.define(frozen=True, slots=True)
class BenchConfig:
    size_mb: int = attrs.field(default=DEFAULT_SIZE_MB, validator=_positive)
    iterations: int = attrs.field(default=DEFAULT_ITERATIONS, validator=_positive)
    device: int = attrs.field(default=DEFAULT_DEVICE, validator=_non_negative)
    latency: bool = False

    @property
    def size_bytes(self) -> int:
        return self.size_mb * BYTES_PER_MIB
