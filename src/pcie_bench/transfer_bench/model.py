from __future__ import annotations

from typing import Literal

import attrs

from .config import BYTES_PER_GIB

Direction = Literal["h2d", "d2h"]


def throughput_gib_s(*, bytes_moved: int, elapsed_ms: float) -> float:
    """GiB/s for `bytes_moved` bytes over `elapsed_ms` milliseconds."""
    if elapsed_ms <= 0:
        raise ValueError(f"elapsed_ms must be > 0, got {elapsed_ms}")
    return (bytes_moved / BYTES_PER_GIB) / (elapsed_ms / 1000.0)


def _min_avg(values: list[float]) -> tuple[float, float]:
    if not values:
        raise ValueError("no per-iteration samples")
    return min(values), sum(values) / len(values)


@attrs.define(frozen=True, slots=True)
class TransferResult:
    label: str
    direction: Direction
    size_bytes: int
    iterations: int
    elapsed_ms: float
    # One event-timed span per copy, inside the whole-span measurement.
    iteration_ms: tuple[float, ...] = attrs.field(default=(), converter=tuple)

    @property
    def bytes_moved(self) -> int:
        return self.size_bytes * self.iterations

    @property
    def gib_per_s(self) -> float:
        return throughput_gib_s(bytes_moved=self.bytes_moved, elapsed_ms=self.elapsed_ms)

    def per_copy_gib_per_s(self) -> tuple[float, float]:
        """(min, avg) throughput over the individually timed copies."""
        return _min_avg([throughput_gib_s(bytes_moved=self.size_bytes, elapsed_ms=ms) for ms in self.iteration_ms])


@attrs.define(frozen=True, slots=True)
class RoundTripResult:
    """H2D followed by D2H on one stream, timed as a single span.

    Each direction is reported as exactly half the combined throughput, so the
    method cannot distinguish a real asymmetry between the two.
    """

    size_bytes: int
    iterations: int
    elapsed_ms: float
    iteration_ms: tuple[float, ...] = attrs.field(default=(), converter=tuple)

    @property
    def bytes_moved(self) -> int:
        return 2 * self.size_bytes * self.iterations

    @property
    def combined_gib_per_s(self) -> float:
        return throughput_gib_s(bytes_moved=self.bytes_moved, elapsed_ms=self.elapsed_ms)

    @property
    def upload_gib_per_s(self) -> float:
        return self.combined_gib_per_s / 2

    @property
    def download_gib_per_s(self) -> float:
        return self.combined_gib_per_s / 2

    def per_round_gib_per_s(self) -> tuple[float, float]:
        """(min, avg) combined throughput over the individually timed round trips."""
        return _min_avg([throughput_gib_s(bytes_moved=2 * self.size_bytes, elapsed_ms=ms) for ms in self.iteration_ms])


@attrs.define(frozen=True, slots=True)
class LatencyResult:
    """Host-observed time from issuing one small copy to its completion."""

    label: str
    direction: Direction
    size_bytes: int
    samples_us: tuple[float, ...] = attrs.field(converter=tuple)

    @property
    def min_us(self) -> float:
        return _min_avg(list(self.samples_us))[0]

    @property
    def avg_us(self) -> float:
        return _min_avg(list(self.samples_us))[1]


@attrs.define(frozen=True, slots=True)
class BandwidthSummary:
    """The five scalars the report is built from (GiB/s)."""

    h2d: float
    d2h: float
    bidir_h2d: float
    bidir_d2h: float
    round_trip: float

    @staticmethod
    def from_results(
        *,
        h2d: TransferResult,
        d2h: TransferResult,
        bidir_h2d: TransferResult,
        bidir_d2h: TransferResult,
        round_trip: RoundTripResult,
    ) -> "BandwidthSummary":
        return BandwidthSummary(
            h2d=h2d.gib_per_s,
            d2h=d2h.gib_per_s,
            bidir_h2d=bidir_h2d.gib_per_s,
            bidir_d2h=bidir_d2h.gib_per_s,
            round_trip=round_trip.upload_gib_per_s,
        )
