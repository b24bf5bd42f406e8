from __future__ import annotations

import itertools

import pytest
import torch

from pcie_bench.transfer_bench import transfers
from pcie_bench.transfer_bench.config import WARMUP_ITERATIONS
from pcie_bench.transfer_bench.device import TransferBuffers, allocate_buffers
from pcie_bench.transfer_bench.errors import TransferError

SIZE = 4096


class FakeStream:
    def __init__(self, name: str) -> None:
        self.name = name


class FakeEvent:
    def __init__(self, name: str, ms: float = 2.0) -> None:
        self.name = name
        self.ms = ms

    def elapsed_time(self, end: FakeEvent) -> float:
        return self.ms


def _buffers() -> TransferBuffers:
    return TransferBuffers(
        host_upload="host_up",  # type: ignore[arg-type]
        host_download="host_down",  # type: ignore[arg-type]
        device_upload="dev_up",  # type: ignore[arg-type]
        device_download="dev_down",  # type: ignore[arg-type]
        size_bytes=SIZE,
    )


@pytest.fixture
def log(monkeypatch: pytest.MonkeyPatch) -> list[tuple[str, ...]]:
    """Replace the CUDA primitives with recorders; returns the shared call log."""
    calls: list[tuple[str, ...]] = []
    stream_ids = itertools.count()
    event_ids = itertools.count()

    def new_stream() -> FakeStream:
        return FakeStream(f"s{next(stream_ids)}")

    def new_events() -> tuple[FakeEvent, FakeEvent]:
        n = next(event_ids)
        return FakeEvent(f"e{n}a"), FakeEvent(f"e{n}b")

    monkeypatch.setattr(transfers, "_new_stream", new_stream)
    monkeypatch.setattr(transfers, "_new_events", new_events)
    monkeypatch.setattr(
        transfers,
        "_issue_copy",
        lambda dst, src, size, stream, call_site: calls.append(("copy", stream.name, call_site, src, dst)),
    )
    monkeypatch.setattr(transfers, "_sync", lambda stream: calls.append(("sync", stream.name)))
    monkeypatch.setattr(transfers, "_record", lambda event, stream: calls.append(("record", stream.name, event.name)))
    return calls


def _kinds(calls: list[tuple[str, ...]]) -> list[str]:
    return [c[0] for c in calls]


def test_timed_copy_warms_up_then_brackets_each_copy(log: list[tuple[str, ...]]) -> None:
    stream = FakeStream("main")
    total, per_copy = transfers.timed_copy("dst", "src", SIZE, 3, stream, call_site=transfers.H2D_CALL)  # type: ignore[arg-type]

    warmup = log[:WARMUP_ITERATIONS]
    assert warmup == [("copy", "main", transfers.H2D_CALL, "src", "dst")] * WARMUP_ITERATIONS
    assert log[WARMUP_ITERATIONS] == ("sync", "main")

    timed = log[WARMUP_ITERATIONS + 1 :]
    assert _kinds(timed) == ["record"] + ["record", "copy", "record"] * 3 + ["record", "sync"]
    # Whole span opens first and closes last, around the per-copy pairs.
    assert timed[0] == ("record", "main", "e0a")
    assert timed[-2] == ("record", "main", "e0b")
    assert [c[2] for c in timed[1:-2] if c[0] == "record"] == ["e1a", "e1b", "e2a", "e2b", "e3a", "e3b"]
    assert total == 2.0
    assert per_copy == (2.0, 2.0, 2.0)


def test_timed_copy_rejects_bad_arguments(log: list[tuple[str, ...]]) -> None:
    with pytest.raises(ValueError):
        transfers.timed_copy("dst", "src", 0, 3, FakeStream("s"), call_site="x")  # type: ignore[arg-type]
    with pytest.raises(ValueError):
        transfers.timed_copy("dst", "src", SIZE, 0, FakeStream("s"), call_site="x")  # type: ignore[arg-type]
    assert log == []


def test_unidirectional_directions_use_their_own_buffers(log: list[tuple[str, ...]]) -> None:
    up = transfers.measure_h2d(_buffers(), SIZE, 2)
    down = transfers.measure_d2h(_buffers(), SIZE, 2)

    copies = [c for c in log if c[0] == "copy"]
    assert {c[2:] for c in copies[: WARMUP_ITERATIONS + 2]} == {(transfers.H2D_CALL, "host_up", "dev_up")}
    assert {c[2:] for c in copies[WARMUP_ITERATIONS + 2 :]} == {(transfers.D2H_CALL, "dev_down", "host_down")}
    assert (up.direction, len(up.iteration_ms)) == ("h2d", 2)
    assert (down.direction, len(down.iteration_ms)) == ("d2h", 2)


@pytest.mark.parametrize("measure_h2d", [True, False])
def test_bidirectional_times_only_the_measured_stream(log: list[tuple[str, ...]], measure_h2d: bool) -> None:
    result = transfers.measure_bidirectional(_buffers(), SIZE, 4, measure_h2d=measure_h2d)

    # Streams are created H2D first, then D2H.
    measured, other = ("s0", "s1") if measure_h2d else ("s1", "s0")
    measured_call = transfers.H2D_CALL if measure_h2d else transfers.D2H_CALL

    warmup = log[: 2 * WARMUP_ITERATIONS]
    assert [c[1] for c in warmup] == ["s0", "s1"] * WARMUP_ITERATIONS
    assert log[2 * WARMUP_ITERATIONS : 2 * WARMUP_ITERATIONS + 2] == [("sync", "s0"), ("sync", "s1")]

    timed = log[2 * WARMUP_ITERATIONS + 2 :]
    assert {c[1] for c in timed if c[0] == "record"} == {measured}
    assert timed[0] == ("record", measured, "e0a")
    assert timed[-3] == ("record", measured, "e0b")
    assert sorted(timed[-2:]) == [("sync", "s0"), ("sync", "s1")]

    copies = [c for c in timed if c[0] == "copy"]
    assert len(copies) == 8
    for first, second in zip(copies[::2], copies[1::2]):
        assert (first[1], first[2]) == (measured, measured_call)
        assert second[1] == other

    # Per-round events wrap the measured copy only.
    body = timed[1:-3]
    assert _kinds(body) == ["record", "copy", "record", "copy"] * 4
    assert result.direction == ("h2d" if measure_h2d else "d2h")
    assert result.iteration_ms == (2.0,) * 4


def test_round_trip_goes_through_one_device_buffer(log: list[tuple[str, ...]]) -> None:
    result = transfers.measure_round_trip(_buffers(), SIZE, 2)

    assert {c[1] for c in log} == {"s0"}
    timed = log[2 * WARMUP_ITERATIONS + 1 :]
    assert _kinds(timed) == ["record"] + ["record", "copy", "copy", "record"] * 2 + ["record", "sync"]
    copies = [c[2:] for c in timed if c[0] == "copy"]
    assert copies == [
        (transfers.H2D_CALL, "host_up", "dev_up"),
        (transfers.D2H_CALL, "dev_up", "host_down"),
    ] * 2
    assert result.iteration_ms == (2.0, 2.0)


def test_latency_syncs_after_every_copy(log: list[tuple[str, ...]]) -> None:
    result = transfers.measure_latency(_buffers(), 1, 5, measure_h2d=False)

    timed = log[WARMUP_ITERATIONS + 1 :]
    assert _kinds(timed) == ["copy", "sync"] * 5
    assert {c[2:] for c in timed if c[0] == "copy"} == {(transfers.D2H_CALL, "dev_down", "host_down")}
    assert result.label == "Device -> Host latency (1 B)"
    assert len(result.samples_us) == 5
    assert result.min_us >= 0


@pytest.mark.parametrize("bad", [0.0, -1.0, float("nan"), float("inf")])
def test_elapsed_ms_rejects_unusable_spans(bad: float) -> None:
    with pytest.raises(TransferError) as exc:
        transfers._elapsed_ms(FakeEvent("a", bad), FakeEvent("b"))  # type: ignore[arg-type]
    assert exc.value.call_site == "cudaEventElapsedTime"


def test_elapsed_ms_passes_positive_span_through() -> None:
    assert transfers._elapsed_ms(FakeEvent("a", 1.25), FakeEvent("b")) == 1.25  # type: ignore[arg-type]


@pytest.mark.parametrize("size", [0, -1])
def test_allocate_buffers_rejects_non_positive_size(size: int) -> None:
    with pytest.raises(ValueError):
        allocate_buffers(torch.device("cpu"), size)
