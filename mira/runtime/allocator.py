"""Allocator capability: the pluggable backing for every heap block."""
from __future__ import annotations

from abc import ABC, abstractmethod
import ctypes

from ..constants import ARENA_DEFAULT_CAPACITY, ROLE_ALLOCATOR
from ..errors import AllocatorError, AllocatorUninitialized
from ..ffi import NativeDeclaration, bind_native, load_library
from .core import Handle, Value
from .roles import ROLE_REGISTRY, RoleRegistry

FAILURE = 0


class Allocator(ABC):
    """Implementor contract. Addresses are plain ints and ``0`` signals failure."""

    name = "allocator"

    @abstractmethod
    def allocate(self, size: int) -> int:
        ...

    @abstractmethod
    def reallocate(self, address: int, size: int) -> int:
        """Resize a block. On failure return ``0`` and leave the block untouched."""

    @abstractmethod
    def release(self, address: int) -> None:
        ...

    @abstractmethod
    def read(self, address: int, offset: int, length: int) -> bytes:
        ...

    @abstractmethod
    def write(self, address: int, offset: int, data: bytes) -> None:
        ...

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        return f"<{type(self).__name__} {self.name}>"


class ArenaAllocator(Allocator):
    """Bounded in-process allocator; refuses requests beyond its capacity."""

    ALIGN = 16

    def __init__(self, capacity: int = ARENA_DEFAULT_CAPACITY, *, name: str = "arena"):
        self.capacity = capacity
        self.name = name
        self.blocks: dict[int, bytearray] = {}
        self.in_use = 0
        self._next = 0x1000

    def _bump(self, size: int) -> int:
        address = self._next
        span = max(size, 1)
        self._next += (span + self.ALIGN - 1) // self.ALIGN * self.ALIGN
        return address

    def allocate(self, size: int) -> int:
        if self.in_use + size > self.capacity:
            return FAILURE
        address = self._bump(size)
        self.blocks[address] = bytearray(size)
        self.in_use += size
        return address

    def reallocate(self, address: int, size: int) -> int:
        block = self.blocks[address]
        if self.in_use - len(block) + size > self.capacity:
            return FAILURE
        new_address = self._bump(size)
        moved = bytearray(size)
        keep = min(size, len(block))
        moved[:keep] = block[:keep]
        self.blocks[new_address] = moved
        self.in_use += size - len(block)
        del self.blocks[address]
        return new_address

    def release(self, address: int) -> None:
        block = self.blocks.pop(address)
        self.in_use -= len(block)

    def read(self, address: int, offset: int, length: int) -> bytes:
        return bytes(self.blocks[address][offset : offset + length])

    def write(self, address: int, offset: int, data: bytes) -> None:
        self.blocks[address][offset : offset + len(data)] = data


LIBC_DECLARATIONS = (
    NativeDeclaration("malloc", ["usize"], "ptr"),
    NativeDeclaration("realloc", ["ptr", "usize"], "ptr"),
    NativeDeclaration("free", ["ptr"], "void"),
)


class NativeAllocator(Allocator):
    """Delegates to ``malloc``/``realloc``/``free`` through the native binding layer."""

    def __init__(self, library: str | None = "c", *, natives: dict | None = None, name: str = "native"):
        self.name = name
        if natives is None:
            lib = load_library(library)
            natives = {decl.name: bind_native(decl, library=lib) for decl in LIBC_DECLARATIONS}
        self._malloc = natives["malloc"]
        self._realloc = natives["realloc"]
        self._free = natives["free"]

    def allocate(self, size: int) -> int:
        return self._malloc(Value.number(size)).payload.address

    def reallocate(self, address: int, size: int) -> int:
        # realloc leaves the original block alone when it returns NULL.
        return self._realloc(Value.handle(Handle(address)), Value.number(size)).payload.address

    def release(self, address: int) -> None:
        self._free(Value.handle(Handle(address)))

    def read(self, address: int, offset: int, length: int) -> bytes:
        return ctypes.string_at(address + offset, length)

    def write(self, address: int, offset: int, data: bytes) -> None:
        ctypes.memmove(address + offset, data, len(data))


class ReallocFailure:
    """Falsy result of a failed resize; ``original`` is still live."""

    def __init__(self, original: Handle, size: int):
        self.original = original
        self.size = size

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        return f"<ReallocFailure {self.size} bytes for {self.original!r}>"


class AllocatorRegistry:
    """Routes allocation requests to whichever implementor holds the allocator role."""

    def __init__(self, roles: RoleRegistry | None = None):
        self.roles = roles if roles is not None else ROLE_REGISTRY
        self.log: list[str] = []
        self.live: set[Handle] = set()

    def initialize(self, allocator: Allocator, *, source: str | None = None) -> Allocator:
        self.roles.tag(ROLE_ALLOCATOR, allocator, source=source or allocator.name)
        return allocator

    def retag(self, allocator: Allocator, *, source: str | None = None) -> Allocator:
        self.roles.retag(ROLE_ALLOCATOR, allocator, source=source or allocator.name)
        return allocator

    @property
    def active(self) -> Allocator:
        self._require_initialized()
        return self.roles.resolve(ROLE_ALLOCATOR)

    def _require_initialized(self) -> None:
        if not self.roles.is_tagged(ROLE_ALLOCATOR):
            raise AllocatorUninitialized(
                "No allocator implementor is tagged; initialize one before allocating"
            )

    def _check_live(self, handle: Handle) -> None:
        if handle.released:
            raise AllocatorError(
                f"Handle {handle.address:#x} was already released",
                size=handle.size,
                handle=handle,
            )
        if handle not in self.live:
            raise AllocatorError(
                f"Handle {handle.address:#x} was not allocated by this registry",
                size=handle.size,
                handle=handle,
            )

    @staticmethod
    def _check_size(size: int, handle: Handle | None = None) -> None:
        if isinstance(size, bool) or not isinstance(size, int) or size <= 0:
            raise AllocatorError(f"Invalid allocation size: {size!r}", size=size, handle=handle)

    def allocate(self, size: int) -> Handle:
        allocator = self.active
        self._check_size(size)
        address = allocator.allocate(size)
        if address == FAILURE:
            self.log.append(f"alloc:fail:{size}@{allocator.name}")
            raise AllocatorError(
                f"{allocator.name} could not allocate {size} bytes", size=size
            )
        handle = Handle(address, size, allocator.name, allocator=allocator)
        self.live.add(handle)
        self.log.append(f"alloc:{size}@{allocator.name}")
        return handle

    def reallocate(self, handle: Handle, size: int) -> Handle | ReallocFailure:
        self._require_initialized()
        self._check_live(handle)
        self._check_size(size, handle)
        allocator = handle.allocator
        address = allocator.reallocate(handle.address, size)
        if address == FAILURE:
            self.log.append(f"realloc:fail:{size}@{allocator.name}")
            return ReallocFailure(handle, size)
        self.live.discard(handle)
        handle.released = True
        resized = Handle(address, size, allocator.name, allocator=allocator)
        self.live.add(resized)
        self.log.append(f"realloc:{handle.size}->{size}@{allocator.name}")
        return resized

    def release(self, handle: Handle) -> None:
        self._require_initialized()
        self._check_live(handle)
        handle.allocator.release(handle.address)
        handle.released = True
        self.live.discard(handle)
        self.log.append(f"free:{handle.size}@{handle.allocator.name}")

    def read(self, handle: Handle, offset: int = 0, length: int | None = None) -> bytes:
        self._check_live(handle)
        if length is None:
            length = handle.size - offset
        if offset < 0 or length < 0 or offset + length > handle.size:
            raise AllocatorError(
                f"Read of {length} bytes at {offset} is outside a {handle.size}-byte block",
                size=handle.size,
                handle=handle,
            )
        return handle.allocator.read(handle.address, offset, length)

    def write(self, handle: Handle, offset: int, data: bytes) -> None:
        self._check_live(handle)
        if offset < 0 or offset + len(data) > handle.size:
            raise AllocatorError(
                f"Write of {len(data)} bytes at {offset} is outside a {handle.size}-byte block",
                size=handle.size,
                handle=handle,
            )
        handle.allocator.write(handle.address, offset, bytes(data))

    def live_bytes(self) -> int:
        return sum(h.size for h in self.live)


ALLOCATOR_REGISTRY = AllocatorRegistry()


__all__ = [
    "ALLOCATOR_REGISTRY",
    "Allocator",
    "AllocatorRegistry",
    "ArenaAllocator",
    "FAILURE",
    "LIBC_DECLARATIONS",
    "NativeAllocator",
    "ReallocFailure",
]
