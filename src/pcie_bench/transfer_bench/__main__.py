from __future__ import annotations

import argparse

from .config import (
    DEFAULT_DEVICE,
    DEFAULT_ITERATIONS,
    DEFAULT_SIZE_MB,
    LATENCY_ITERATIONS,
    LATENCY_SIZE_BYTES,
    BenchConfig,
)
from .interfaces import reference_chart
from .runner import run


def _positive_int(v: str) -> int:
    try:
        n = int(v)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {v!r}") from None
    if n <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {v!r}")
    return n


def _device_index(v: str) -> int:
    try:
        n = int(v)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a device index, got {v!r}") from None
    if n < 0:
        raise argparse.ArgumentTypeError(f"expected a device index >= 0, got {v!r}")
    return n


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pcie_bench.transfer_bench",
        description="Measure host<->device transfer bandwidth: unidirectional, bidirectional and round-trip.",
    )
    parser.add_argument(
        "-s",
        "--size-mb",
        type=_positive_int,
        default=DEFAULT_SIZE_MB,
        help=f"Buffer size in MiB (default: {DEFAULT_SIZE_MB}).",
    )
    parser.add_argument(
        "-i",
        "--iterations",
        type=_positive_int,
        default=DEFAULT_ITERATIONS,
        help=f"Timed copies per test (default: {DEFAULT_ITERATIONS}).",
    )
    parser.add_argument(
        "-d",
        "--device",
        type=_device_index,
        default=DEFAULT_DEVICE,
        help=f"CUDA device index (default: {DEFAULT_DEVICE}).",
    )
    parser.add_argument(
        "--latency",
        action="store_true",
        help=f"Also time {LATENCY_ITERATIONS} single {LATENCY_SIZE_BYTES}-byte copies per direction (min/avg in us).",
    )
    parser.add_argument(
        "--reference",
        action="store_true",
        help="Print the PCIe/Thunderbolt bandwidth reference chart and exit.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    ns = parser.parse_args(argv)

    if ns.reference:
        print(reference_chart())
        return 0

    return run(BenchConfig(size_mb=ns.size_mb, iterations=ns.iterations, device=ns.device, latency=ns.latency))


if __name__ == "__main__":
    raise SystemExit(main())
