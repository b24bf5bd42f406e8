from __future__ import annotations

import attrs
import torch

from .errors import TransferError, checked


@attrs.define(frozen=True, slots=True)
class DeviceInfo:
    index: int
    name: str
    compute_capability: tuple[int, int]
    total_memory_bytes: int
    torch_version: str
    cuda_version: str


@attrs.define(frozen=True, slots=True)
class TransferBuffers:
    """Two pinned host buffers and two device buffers, all `size_bytes` long.

    The upload pair serves H2D copies, the download pair D2H copies, so the
    bidirectional test never has two streams writing the same buffer.
    """

    host_upload: torch.Tensor
    host_download: torch.Tensor
    device_upload: torch.Tensor
    device_download: torch.Tensor
    size_bytes: int


def select_device(index: int) -> torch.device:
    if not torch.cuda.is_available():
        raise TransferError(call_site="cudaGetDeviceCount", description="no CUDA-capable device is available")
    count = torch.cuda.device_count()
    if index >= count:
        raise TransferError(
            call_site="cudaSetDevice",
            description=f"invalid device ordinal {index} ({count} device(s) present)",
        )
    with checked("cudaSetDevice"):
        torch.cuda.set_device(index)
    return torch.device("cuda", index)


def describe_device(device: torch.device) -> DeviceInfo:
    with checked("cudaGetDeviceProperties"):
        props = torch.cuda.get_device_properties(device)
    return DeviceInfo(
        index=device.index if device.index is not None else 0,
        name=props.name,
        compute_capability=(props.major, props.minor),
        total_memory_bytes=props.total_memory,
        torch_version=torch.__version__,
        cuda_version=torch.version.cuda or "unknown",
    )


def _alloc_host(size_bytes: int, call_site: str) -> torch.Tensor:
    with checked(call_site):
        buf = torch.empty(size_bytes, dtype=torch.uint8, pin_memory=True)
        buf.fill_(0xA5)
    return buf


def _alloc_device(size_bytes: int, device: torch.device, call_site: str) -> torch.Tensor:
    with checked(call_site):
        buf = torch.empty(size_bytes, dtype=torch.uint8, device=device)
        buf.fill_(0x5A)
    return buf


def allocate_buffers(device: torch.device, size_bytes: int) -> TransferBuffers:
    """Allocate the four transfer buffers, filled and synchronized.

    The tensors are freed once the last reference to the returned record goes
    away. Callers should let it fall out of scope before calling
    `release_cached_memory`.
    """
    if size_bytes <= 0:
        raise ValueError(f"size_bytes must be > 0, got {size_bytes}")

    buffers = TransferBuffers(
        host_upload=_alloc_host(size_bytes, "cudaMallocHost(host_upload)"),
        host_download=_alloc_host(size_bytes, "cudaMallocHost(host_download)"),
        device_upload=_alloc_device(size_bytes, device, "cudaMalloc(device_upload)"),
        device_download=_alloc_device(size_bytes, device, "cudaMalloc(device_download)"),
        size_bytes=size_bytes,
    )
    with checked("cudaDeviceSynchronize"):
        torch.cuda.synchronize(device)
    return buffers


def release_cached_memory() -> None:
    """Return device blocks no longer backing a live tensor to the driver."""
    with checked("cudaFree"):
        torch.cuda.empty_cache()
