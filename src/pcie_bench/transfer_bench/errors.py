from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

import attrs


@attrs.define
class TransferError(RuntimeError):
    """A device runtime call failed. Always fatal for the run."""

    call_site: str
    description: str

    def __str__(self) -> str:
        return f"CUDA error at {self.call_site}: {self.description}"


@contextmanager
def checked(call_site: str) -> Iterator[None]:
    """Re-raise any runtime failure inside the block as `TransferError`.

    torch surfaces driver errors (including out-of-memory) as `RuntimeError`
    subclasses; the first line of the message is the driver description.
    """
    try:
        yield
    except TransferError:
        raise
    except RuntimeError as e:
        text = str(e).strip()
        description = text.splitlines()[0] if text else type(e).__name__
        raise TransferError(call_site=call_site, description=description) from e
