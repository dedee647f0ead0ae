"""Moving strings across the native boundary.

Host strings become zero terminated UTF-8 buffers owned by a process-wide
:class:`Allocator`. Every buffer handed to native code must be released with
:func:`free` once the native call returns; :func:`native_string` pairs the two
for the common case.

Native strings come back either copied (:func:`to_host`, safe to keep) or as
a :class:`TransientView` that is only readable while its :class:`BorrowScope`
is open.
"""

import ctypes
import logging
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

from tkbridge.errors import MarshalError

logger = logging.getLogger(__name__)

ENCODING = "utf-8"


class Allocator:
    """Hands out zero terminated buffers addressed by plain integers.

    Buffers stay alive until they are explicitly freed. There is no locking:
    the bridge is confined to a single thread.
    """

    def __init__(self):
        self._live: Dict[int, ctypes.Array] = {}
        self.allocations = 0

    def malloc(self, size: int) -> int:
        if size <= 0:
            raise MarshalError(f"invalid allocation size {size}")
        try:
            buf = ctypes.create_string_buffer(size)
        except MemoryError as e:
            raise MarshalError(f"allocating {size} bytes: out of memory") from e
        address = ctypes.addressof(buf)
        self._live[address] = buf
        self.allocations += 1
        return address

    def free(self, address: int) -> None:
        if not address:
            return
        if self._live.pop(address, None) is None:
            raise MarshalError(f"free of unknown address {address:#x}")

    def is_live(self, address: int) -> bool:
        return address in self._live

    @property
    def live_count(self) -> int:
        return len(self._live)


allocator = Allocator()


def to_native(s: str, alloc: Optional[Allocator] = None) -> int:
    """Copy ``s`` into a new zero terminated native buffer.

    Args:
        s: Text to copy. It must not contain NUL characters.
        alloc: Allocator to use, the process-wide one by default.

    Returns:
        Address of the buffer, or 0 for the empty string. No allocation
        happens for the empty string and 0 means "no argument" downstream.

    Raises:
        MarshalError: If ``s`` contains NUL or memory is exhausted.
    """
    if s == "":
        return 0

    data = s.encode(ENCODING)
    if b"\x00" in data:
        raise MarshalError("string contains an embedded NUL byte")

    alloc = alloc or allocator
    address = alloc.malloc(len(data) + 1)
    ctypes.memmove(address, data, len(data))
    # create_string_buffer zero fills, the terminator is already in place.
    return address


def free(address: int, alloc: Optional[Allocator] = None) -> None:
    """Release a buffer returned by :func:`to_native`. 0 is ignored."""
    (alloc or allocator).free(address)


@contextmanager
def native_string(s: str, alloc: Optional[Allocator] = None) -> Iterator[int]:
    """Yield the native address of ``s`` and free it on every exit path."""
    address = to_native(s, alloc)
    try:
        yield address
    finally:
        free(address, alloc)


def to_host(address: Optional[int]) -> str:
    """Copy a zero terminated native string into a host string."""
    if not address:
        return ""
    return ctypes.string_at(address).decode(ENCODING, errors="replace")


class TransientView:
    """A native string that may only be read inside its borrow scope."""

    __slots__ = ("_address", "_scope")

    def __init__(self, address: Optional[int], scope: "BorrowScope"):
        self._address = address or 0
        self._scope = scope

    def __str__(self) -> str:
        if self._scope.closed:
            raise MarshalError("transient native string used after its scope ended")
        return to_host(self._address)


class BorrowScope:
    """Scope token for transient views, closed when the native frame returns."""

    def __init__(self):
        self.closed = False

    def view(self, address: Optional[int]) -> TransientView:
        if self.closed:
            raise MarshalError("borrow scope already closed")
        return TransientView(address, self)

    def close(self) -> None:
        self.closed = True

    def __enter__(self) -> "BorrowScope":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
