"""Standard-library surface: allocator-backed containers, output and halting."""
from __future__ import annotations

import sys
from typing import Any, Callable

from ..constants import BUFFER_INITIAL_CAPACITY, ROLE_CLONE, ROLE_COPY, ROLE_PRINT
from ..errors import AllocatorError, DanglingReferenceError, Halt
from .aliasing import default_duplicate
from .allocator import ALLOCATOR_REGISTRY, AllocatorRegistry
from .core import Handle, StructInstance, Value, wrap
from .roles import ROLE_REGISTRY, RoleRegistry


class ByteBuffer:
    """Growable byte vector whose storage always comes from the allocator registry."""

    def __init__(self, registry: AllocatorRegistry | None = None, capacity: int = BUFFER_INITIAL_CAPACITY):
        self.registry = registry if registry is not None else ALLOCATOR_REGISTRY
        self.handle: Handle | None = self.registry.allocate(capacity)
        self.length = 0

    def _live(self) -> Handle:
        if self.handle is None:
            raise AllocatorError("Buffer was already dropped")
        return self.handle

    @property
    def capacity(self) -> int:
        return self._live().size

    def reserve(self, additional: int) -> None:
        handle = self._live()
        needed = self.length + additional
        if needed <= handle.size:
            return
        new_size = max(handle.size * 2, needed)
        resized = self.registry.reallocate(handle, new_size)
        if not resized:
            raise AllocatorError(
                f"Cannot grow buffer from {handle.size} to {new_size} bytes",
                size=new_size,
                handle=handle,
            )
        self.handle = resized

    def push(self, byte: int) -> None:
        if not 0 <= byte <= 0xFF:
            raise ValueError(f"Byte out of range: {byte}")
        self.extend(bytes([byte]))

    def extend(self, data: bytes) -> None:
        data = bytes(data)
        if not data:
            return
        self.reserve(len(data))
        self.registry.write(self._live(), self.length, data)
        self.length += len(data)

    def __len__(self) -> int:
        return self.length

    def __getitem__(self, index: int) -> int:
        if index < 0:
            index += self.length
        if not 0 <= index < self.length:
            raise IndexError("ByteBuffer index out of range")
        return self.registry.read(self._live(), index, 1)[0]

    def to_bytes(self) -> bytes:
        if not self.length:
            return b""
        return self.registry.read(self._live(), 0, self.length)

    def clone(self) -> "ByteBuffer":
        copy = ByteBuffer(self.registry, self.capacity)
        copy.extend(self.to_bytes())
        return copy

    def drop(self) -> None:
        self.registry.release(self._live())
        self.handle = None

    @property
    def dropped(self) -> bool:
        return self.handle is None

    def __enter__(self) -> "ByteBuffer":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self.handle is not None:
            self.drop()

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        return f"<ByteBuffer len={self.length} handle={self.handle!r}>"


def make_deep_clone(registry: AllocatorRegistry | None = None) -> Callable[[Value], Value]:
    """Deep copy: live heap blocks are duplicated through the allocator registry."""

    allocators = registry if registry is not None else ALLOCATOR_REGISTRY

    def deep_clone(value: Value) -> Value:
        value = wrap(value)
        if value.kind == "struct":
            inst: StructInstance = value.payload
            return Value.struct(
                StructInstance(
                    inst.struct_type,
                    {name: deep_clone(field) for name, field in inst.fields.items()},
                )
            )
        if value.kind == "handle" and value.payload in allocators.live and not value.payload.released:
            original: Handle = value.payload
            copy = allocators.allocate(original.size)
            allocators.write(copy, 0, allocators.read(original))
            return Value.handle(copy)
        return value.duplicate()

    deep_clone.__name__ = "deep_clone"
    return deep_clone


def format_value(value: Any) -> str:
    value = wrap(value)
    if value.kind == "number":
        return str(value.payload)
    if value.kind == "text":
        return value.payload
    if value.kind == "struct":
        inst: StructInstance = value.payload
        inner = ", ".join(f"{k}: {format_value(v)}" for k, v in inst.fields.items())
        return f"{inst.type_name} {{ {inner} }}" if inner else f"{inst.type_name} {{}}"
    if value.kind == "handle":
        return f"<handle {value.payload.address:#x}>"
    try:
        return "&" + format_value(value.payload.value)
    except DanglingReferenceError:
        return "&<dangling>"


def format_message(fmt: str, args: tuple) -> str:
    return fmt.format(*(format_value(a) for a in args))


def write_stdout(text: Value) -> None:
    sys.stdout.write(format_value(text))
    sys.stdout.flush()


def println(fmt: str, *args: Any, roles: RoleRegistry | None = None) -> str:
    """Format a line and hand it to whichever declaration holds the print role."""

    registry = roles if roles is not None else ROLE_REGISTRY
    message = format_message(fmt, args)
    registry.resolve(ROLE_PRINT)(Value.text(message + "\n"))
    return message


def halt(fmt: str, *args: Any) -> None:
    """Abort the program; there is no recovery path."""

    raise Halt(format_message(fmt, args))


def install_default_roles(
    roles: RoleRegistry | None = None,
    allocators: AllocatorRegistry | None = None,
) -> dict[str, str]:
    """Tag the built-in copy, clone and print implementations where no role is tagged yet.

    The allocator role is deliberately left alone; it must be initialized
    explicitly before the first allocation.
    """

    registry = roles if roles is not None else ROLE_REGISTRY
    defaults = {
        ROLE_COPY: (default_duplicate, "std::duplicate"),
        ROLE_CLONE: (make_deep_clone(allocators), "std::deep_clone"),
        ROLE_PRINT: (write_stdout, "std::write_stdout"),
    }
    for role, (target, source) in defaults.items():
        if not registry.is_tagged(role):
            registry.tag(role, target, source=source)
    return registry.snapshot()


# The process-wide registry starts with the built-in copy, clone and print roles.
install_default_roles()


__all__ = [
    "ByteBuffer",
    "format_message",
    "format_value",
    "halt",
    "install_default_roles",
    "make_deep_clone",
    "println",
    "write_stdout",
]
