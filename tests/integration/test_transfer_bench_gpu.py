from __future__ import annotations

import math
from collections.abc import Iterator

import pytest
import torch

from pcie_bench.transfer_bench.__main__ import main
from pcie_bench.transfer_bench.config import BYTES_PER_MIB
from pcie_bench.transfer_bench.device import TransferBuffers, allocate_buffers, release_cached_memory, select_device
from pcie_bench.transfer_bench.transfers import (
    measure_bidirectional,
    measure_d2h,
    measure_h2d,
    measure_latency,
    measure_round_trip,
)

SIZE_BYTES = 64 * BYTES_PER_MIB
ITERATIONS = 5

# Far above any current host<->device link; catches unit mistakes, not slow links.
SANITY_MAX_GIB_S = 1000.0

# Run-to-run noise allowance when comparing two separate measurements.
NOISE = 1.05


def _has_cuda_gpu() -> bool:
    return torch.cuda.is_available() and torch.cuda.device_count() > 0


@pytest.fixture(scope="module")
def buffers() -> Iterator[TransferBuffers]:
    if not _has_cuda_gpu():
        pytest.skip("requires CUDA GPU")
    yield allocate_buffers(select_device(0), SIZE_BYTES)
    release_cached_memory()


def _sane(v: float) -> bool:
    return math.isfinite(v) and 0 < v < SANITY_MAX_GIB_S


@pytest.mark.integration
def test_unidirectional_is_positive_and_bounded(buffers: TransferBuffers) -> None:
    assert _sane(measure_h2d(buffers, SIZE_BYTES, ITERATIONS).gib_per_s)
    assert _sane(measure_d2h(buffers, SIZE_BYTES, ITERATIONS).gib_per_s)


@pytest.mark.integration
def test_per_copy_spans_fit_inside_whole_span(buffers: TransferBuffers) -> None:
    r = measure_h2d(buffers, SIZE_BYTES, ITERATIONS)
    assert len(r.iteration_ms) == ITERATIONS
    assert sum(r.iteration_ms) <= r.elapsed_ms * NOISE
    lo, avg = r.per_copy_gib_per_s()
    assert _sane(lo) and lo <= avg


@pytest.mark.integration
@pytest.mark.parametrize("h2d", [True, False])
def test_small_copy_latency_is_positive(buffers: TransferBuffers, h2d: bool) -> None:
    lat = measure_latency(buffers, 1, 50, measure_h2d=h2d)
    assert len(lat.samples_us) == 50
    assert 0 < lat.min_us <= lat.avg_us


@pytest.mark.integration
def test_round_trip_halves_equal(buffers: TransferBuffers) -> None:
    rt = measure_round_trip(buffers, SIZE_BYTES, ITERATIONS)
    assert _sane(rt.combined_gib_per_s)
    assert rt.upload_gib_per_s == rt.download_gib_per_s


@pytest.mark.integration
def test_round_trip_data_arrives(buffers: TransferBuffers) -> None:
    buffers.host_upload.fill_(7)
    buffers.host_download.zero_()
    measure_round_trip(buffers, SIZE_BYTES, 1)
    assert torch.equal(buffers.host_download, buffers.host_upload)


@pytest.mark.integration
@pytest.mark.parametrize("h2d", [True, False])
def test_bidirectional_does_not_exceed_unidirectional(buffers: TransferBuffers, h2d: bool) -> None:
    uni = (measure_h2d if h2d else measure_d2h)(buffers, SIZE_BYTES, ITERATIONS)
    bidir = measure_bidirectional(buffers, SIZE_BYTES, ITERATIONS, measure_h2d=h2d)
    assert bidir.direction == ("h2d" if h2d else "d2h")
    assert _sane(bidir.gib_per_s)
    assert bidir.gib_per_s <= uni.gib_per_s * NOISE


@pytest.mark.integration
def test_end_to_end_output(capsys: pytest.CaptureFixture[str]) -> None:
    if not _has_cuda_gpu():
        pytest.skip("requires CUDA GPU")
    assert main(["-s", "64", "-i", "5"]) == 0

    out = capsys.readouterr().out
    headers = [line.split("]")[0] + "]" for line in out.splitlines() if line.startswith("[Test ")]
    assert headers == [f"[Test {i}]" for i in range(1, 6)]
    assert out.count("GiB/s") >= 5
    table_rows = [line for line in out.splitlines() if line.startswith("|")][2:]
    assert len(table_rows) == 3
