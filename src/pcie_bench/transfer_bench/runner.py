from __future__ import annotations

import sys

from .config import BYTES_PER_GIB, LATENCY_ITERATIONS, LATENCY_SIZE_BYTES, WARMUP_ITERATIONS, BenchConfig
from .device import DeviceInfo, TransferBuffers, allocate_buffers, describe_device, release_cached_memory, select_device
from .errors import TransferError
from .model import BandwidthSummary, LatencyResult, RoundTripResult, TransferResult
from .report import generate_report
from .transfers import measure_bidirectional, measure_d2h, measure_h2d, measure_latency, measure_round_trip

RULE = "=" * 70
THIN_RULE = "-" * 70


def format_header(info: DeviceInfo, cfg: BenchConfig) -> str:
    major, minor = info.compute_capability
    lines = [
        RULE,
        "PCIe Transfer Bandwidth Test",
        RULE,
        f"Device        : [{info.index}] {info.name} (sm_{major}{minor})",
        f"Device memory : {info.total_memory_bytes / BYTES_PER_GIB:.1f} GiB",
        f"Buffer size   : {cfg.size_mb} MiB",
        f"Iterations    : {cfg.iterations} (+{WARMUP_ITERATIONS} warmup)",
        f"Runtime       : torch {info.torch_version}, CUDA {info.cuda_version}",
        RULE,
    ]
    return "\n".join(lines)


def format_section(index: int, result: TransferResult) -> str:
    lo, avg = result.per_copy_gib_per_s()
    return "\n".join(
        [
            f"[Test {index}] {result.label}",
            THIN_RULE,
            f"  Time      : {result.elapsed_ms:.3f} ms for {result.iterations} x {result.size_bytes} bytes",
            f"  Bandwidth : {result.gib_per_s:.2f} GiB/s",
            f"  Per copy  : min {lo:.2f} / avg {avg:.2f} GiB/s",
            "",
        ]
    )


def format_round_trip_section(index: int, result: RoundTripResult) -> str:
    lo, avg = result.per_round_gib_per_s()
    return "\n".join(
        [
            f"[Test {index}] Round-trip (H2D then D2H, same stream)",
            THIN_RULE,
            f"  Time      : {result.elapsed_ms:.3f} ms for {result.iterations} round trips",
            f"  Combined  : {result.combined_gib_per_s:.2f} GiB/s",
            f"  Upload    : {result.upload_gib_per_s:.2f} GiB/s (combined / 2)",
            f"  Download  : {result.download_gib_per_s:.2f} GiB/s (combined / 2)",
            f"  Per round : min {lo:.2f} / avg {avg:.2f} GiB/s combined",
            "",
        ]
    )


def format_latency_section(index: int, result: LatencyResult) -> str:
    return "\n".join(
        [
            f"[Test {index}] {result.label}",
            THIN_RULE,
            f"  Samples   : {len(result.samples_us)}",
            f"  Min       : {result.min_us:.2f} us",
            f"  Avg       : {result.avg_us:.2f} us",
            "",
        ]
    )


def _measure_all(cfg: BenchConfig, buffers: TransferBuffers) -> BandwidthSummary:
    size = cfg.size_bytes
    n = cfg.iterations
    h2d = measure_h2d(buffers, size, n)
    print(format_section(1, h2d))
    d2h = measure_d2h(buffers, size, n)
    print(format_section(2, d2h))
    bidir_h2d = measure_bidirectional(buffers, size, n, measure_h2d=True)
    print(format_section(3, bidir_h2d))
    bidir_d2h = measure_bidirectional(buffers, size, n, measure_h2d=False)
    print(format_section(4, bidir_d2h))
    rt = measure_round_trip(buffers, size, n)
    print(format_round_trip_section(5, rt))

    if cfg.latency:
        for index, to_device in ((6, True), (7, False)):
            lat = measure_latency(buffers, LATENCY_SIZE_BYTES, LATENCY_ITERATIONS, measure_h2d=to_device)
            print(format_latency_section(index, lat))

    return BandwidthSummary.from_results(h2d=h2d, d2h=d2h, bidir_h2d=bidir_h2d, bidir_d2h=bidir_d2h, round_trip=rt)


def run_tests(cfg: BenchConfig) -> BandwidthSummary:
    """Run the measurements in fixed order, printing each section as it completes."""
    device = select_device(cfg.device)
    print(format_header(describe_device(device), cfg))
    print()

    # Only _measure_all holds the buffers. After a clean return they are freed
    # before the cache is released; a raised error keeps its frame alive.
    try:
        return _measure_all(cfg, allocate_buffers(device, cfg.size_bytes))
    finally:
        release_cached_memory()


def run(cfg: BenchConfig) -> int:
    """Run the benchmark and print the report. Returns the process exit code."""
    try:
        summary = run_tests(cfg)
    except TransferError as e:
        sys.stdout.flush()
        print(str(e), file=sys.stderr)
        return 1

    print(generate_report(summary))
    return 0
