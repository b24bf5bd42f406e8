from __future__ import annotations

import math
import time

import torch

from .config import WARMUP_ITERATIONS
from .device import TransferBuffers
from .errors import TransferError, checked
from .model import Direction, LatencyResult, RoundTripResult, TransferResult

H2D_CALL = "cudaMemcpyAsync(H2D)"
D2H_CALL = "cudaMemcpyAsync(D2H)"


def _issue_copy(dst: torch.Tensor, src: torch.Tensor, size_bytes: int, stream: torch.cuda.Stream, call_site: str) -> None:
    with checked(call_site), torch.cuda.stream(stream):
        dst[:size_bytes].copy_(src[:size_bytes], non_blocking=True)


def _sync(stream: torch.cuda.Stream) -> None:
    with checked("cudaStreamSynchronize"):
        stream.synchronize()


def _new_stream() -> torch.cuda.Stream:
    with checked("cudaStreamCreate"):
        return torch.cuda.Stream()


def _new_events() -> tuple[torch.cuda.Event, torch.cuda.Event]:
    with checked("cudaEventCreate"):
        return torch.cuda.Event(enable_timing=True), torch.cuda.Event(enable_timing=True)


def _record(event: torch.cuda.Event, stream: torch.cuda.Stream) -> None:
    with checked("cudaEventRecord"):
        event.record(stream)


def _elapsed_ms(start: torch.cuda.Event, end: torch.cuda.Event) -> float:
    with checked("cudaEventElapsedTime"):
        ms = float(start.elapsed_time(end))
    if not (math.isfinite(ms) and ms > 0):
        raise TransferError(call_site="cudaEventElapsedTime", description=f"non-positive elapsed time ({ms} ms)")
    return ms


def _check_args(size_bytes: int, iterations: int) -> None:
    if size_bytes <= 0:
        raise ValueError(f"size_bytes must be > 0, got {size_bytes}")
    if iterations <= 0:
        raise ValueError(f"iterations must be > 0, got {iterations}")


def timed_copy(
    dst: torch.Tensor,
    src: torch.Tensor,
    size_bytes: int,
    iterations: int,
    stream: torch.cuda.Stream,
    *,
    call_site: str,
) -> tuple[float, tuple[float, ...]]:
    """Copy `src` into `dst` `iterations` times on `stream`.

    Returns (whole-span ms, per-copy ms). A few untimed warmup copies run
    first. Timing uses events recorded on the stream itself, so the span runs
    from the first timed copy being issued to the last one completing, not
    host wall-clock time. Each copy is also bracketed by its own event pair.
    """
    _check_args(size_bytes, iterations)

    for _ in range(WARMUP_ITERATIONS):
        _issue_copy(dst, src, size_bytes, stream, call_site)
    _sync(stream)

    start, end = _new_events()
    marks = [_new_events() for _ in range(iterations)]
    _record(start, stream)
    for it_start, it_end in marks:
        _record(it_start, stream)
        _issue_copy(dst, src, size_bytes, stream, call_site)
        _record(it_end, stream)
    _record(end, stream)
    _sync(stream)

    return _elapsed_ms(start, end), tuple(_elapsed_ms(a, b) for a, b in marks)


def measure_h2d(buffers: TransferBuffers, size_bytes: int, iterations: int) -> TransferResult:
    elapsed, per_copy = timed_copy(
        buffers.device_upload, buffers.host_upload, size_bytes, iterations, _new_stream(), call_site=H2D_CALL
    )
    return TransferResult(
        label="Host -> Device (unidirectional)",
        direction="h2d",
        size_bytes=size_bytes,
        iterations=iterations,
        elapsed_ms=elapsed,
        iteration_ms=per_copy,
    )


def measure_d2h(buffers: TransferBuffers, size_bytes: int, iterations: int) -> TransferResult:
    elapsed, per_copy = timed_copy(
        buffers.host_download, buffers.device_download, size_bytes, iterations, _new_stream(), call_site=D2H_CALL
    )
    return TransferResult(
        label="Device -> Host (unidirectional)",
        direction="d2h",
        size_bytes=size_bytes,
        iterations=iterations,
        elapsed_ms=elapsed,
        iteration_ms=per_copy,
    )


def measure_bidirectional(buffers: TransferBuffers, size_bytes: int, iterations: int, *, measure_h2d: bool) -> TransferResult:
    """Run H2D and D2H concurrently on two streams, timing only one of them.

    Each round issues one copy per stream: the measured direction first, then
    the interfering one. The streams share no ordering, so both directions
    contend for the link and the measured stream's span reflects it.
    """
    _check_args(size_bytes, iterations)

    h2d_stream = _new_stream()
    d2h_stream = _new_stream()
    h2d = (buffers.device_upload, buffers.host_upload, h2d_stream, H2D_CALL)
    d2h = (buffers.host_download, buffers.device_download, d2h_stream, D2H_CALL)
    measured, interfering = (h2d, d2h) if measure_h2d else (d2h, h2d)
    direction: Direction = "h2d" if measure_h2d else "d2h"

    for _ in range(WARMUP_ITERATIONS):
        _issue_copy(h2d[0], h2d[1], size_bytes, h2d_stream, H2D_CALL)
        _issue_copy(d2h[0], d2h[1], size_bytes, d2h_stream, D2H_CALL)
    _sync(h2d_stream)
    _sync(d2h_stream)

    start, end = _new_events()
    marks = [_new_events() for _ in range(iterations)]
    timed_stream = measured[2]
    _record(start, timed_stream)
    for it_start, it_end in marks:
        _record(it_start, timed_stream)
        _issue_copy(measured[0], measured[1], size_bytes, measured[2], measured[3])
        _record(it_end, timed_stream)
        _issue_copy(interfering[0], interfering[1], size_bytes, interfering[2], interfering[3])
    _record(end, timed_stream)
    _sync(h2d_stream)
    _sync(d2h_stream)

    label = "Host -> Device (bidirectional)" if measure_h2d else "Device -> Host (bidirectional)"
    return TransferResult(
        label=label,
        direction=direction,
        size_bytes=size_bytes,
        iterations=iterations,
        elapsed_ms=_elapsed_ms(start, end),
        iteration_ms=tuple(_elapsed_ms(a, b) for a, b in marks),
    )


def measure_round_trip(buffers: TransferBuffers, size_bytes: int, iterations: int) -> RoundTripResult:
    """Alternate H2D then D2H through one device buffer on a single stream."""
    _check_args(size_bytes, iterations)

    stream = _new_stream()
    dev = buffers.device_upload

    for _ in range(WARMUP_ITERATIONS):
        _issue_copy(dev, buffers.host_upload, size_bytes, stream, H2D_CALL)
        _issue_copy(buffers.host_download, dev, size_bytes, stream, D2H_CALL)
    _sync(stream)

    start, end = _new_events()
    marks = [_new_events() for _ in range(iterations)]
    _record(start, stream)
    for it_start, it_end in marks:
        _record(it_start, stream)
        _issue_copy(dev, buffers.host_upload, size_bytes, stream, H2D_CALL)
        _issue_copy(buffers.host_download, dev, size_bytes, stream, D2H_CALL)
        _record(it_end, stream)
    _record(end, stream)
    _sync(stream)

    return RoundTripResult(
        size_bytes=size_bytes,
        iterations=iterations,
        elapsed_ms=_elapsed_ms(start, end),
        iteration_ms=tuple(_elapsed_ms(a, b) for a, b in marks),
    )


def measure_latency(buffers: TransferBuffers, size_bytes: int, iterations: int, *, measure_h2d: bool) -> LatencyResult:
    """Time single small copies from issue to completion, as seen by the host."""
    _check_args(size_bytes, iterations)

    stream = _new_stream()
    if measure_h2d:
        dst, src, call_site = buffers.device_upload, buffers.host_upload, H2D_CALL
    else:
        dst, src, call_site = buffers.host_download, buffers.device_download, D2H_CALL

    for _ in range(WARMUP_ITERATIONS):
        _issue_copy(dst, src, size_bytes, stream, call_site)
    _sync(stream)

    samples: list[float] = []
    for _ in range(iterations):
        t0 = time.perf_counter()
        _issue_copy(dst, src, size_bytes, stream, call_site)
        _sync(stream)
        samples.append((time.perf_counter() - t0) * 1e6)

    arrow = "Host -> Device" if measure_h2d else "Device -> Host"
    return LatencyResult(
        label=f"{arrow} latency ({size_bytes} B)",
        direction="h2d" if measure_h2d else "d2h",
        size_bytes=size_bytes,
        samples_us=samples,
    )
