"""Core runtime data structures for Mira: values, storage cells and scopes."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator, Optional

from ..constants import VALUE_KINDS
from ..errors import (
    DanglingReferenceError,
    ImmutableBindingError,
    RedefinitionError,
    UnboundNameError,
)


def _scope_path(scope: "Scope | None") -> str:
    parts: list[str] = []
    while scope is not None:
        parts.append(scope.name)
        scope = scope.parent
    return ".".join(reversed(parts))


NULL_HANDLE_ADDRESS = 0


class Handle:
    """Opaque token for a native resource or an allocator block."""

    def __init__(
        self,
        address: int,
        size: int | None = None,
        owner: str | None = None,
        *,
        allocator: Any = None,
    ):
        self.address = address
        self.size = size
        self.owner = owner
        self.allocator = allocator
        self.released = False

    @property
    def is_null(self) -> bool:
        return self.address == NULL_HANDLE_ADDRESS

    def _key(self) -> tuple:
        # Implementors may share a name and hand out the same addresses.
        return (self.address, self.owner, id(self.allocator))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Handle):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        state = " released" if self.released else ""
        return f"<Handle {self.owner or 'native'}:{self.address:#x} size={self.size}{state}>"


class StructInstance:
    """Field storage for one instance of a struct type."""

    def __init__(self, struct_type: Any, fields: dict[str, "Value"]):
        self.struct_type = struct_type
        self.fields = dict(fields)

    @property
    def type_name(self) -> str:
        return getattr(self.struct_type, "name", str(self.struct_type))

    def get(self, field: str) -> "Value":
        try:
            return self.fields[field]
        except KeyError:
            raise UnboundNameError(field, self.type_name) from None

    def set(self, field: str, value: "Value") -> None:
        if field not in self.fields:
            raise UnboundNameError(field, self.type_name)
        self.fields[field] = wrap(value)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, StructInstance):
            return NotImplemented
        return self.struct_type is other.struct_type and self.fields == other.fields

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        inner = ", ".join(f"{k}: {v!r}" for k, v in self.fields.items())
        return f"{self.type_name} {{ {inner} }}"


class Value:
    """Tagged union with exactly one active kind."""

    __slots__ = ("kind", "payload")

    def __init__(self, kind: str, payload: Any):
        if kind not in VALUE_KINDS:
            raise ValueError(f"Unknown value kind: {kind}")
        self.kind = kind
        self.payload = payload

    @classmethod
    def number(cls, n) -> "Value":
        if isinstance(n, bool) or not isinstance(n, (int, float)):
            raise TypeError(f"Number value requires int or float, got {type(n).__name__}")
        return cls("number", n)

    @classmethod
    def text(cls, s: str) -> "Value":
        if not isinstance(s, str):
            raise TypeError(f"Text value requires str, got {type(s).__name__}")
        return cls("text", s)

    @classmethod
    def struct(cls, instance: StructInstance) -> "Value":
        return cls("struct", instance)

    @classmethod
    def handle(cls, handle: Handle) -> "Value":
        return cls("handle", handle)

    @classmethod
    def ref(cls, cell: "Cell") -> "Value":
        return cls("ref", cell)

    def duplicate(self) -> "Value":
        """Bit-for-bit copy: struct fields are copied, handles and refs keep their target."""

        if self.kind == "struct":
            inst: StructInstance = self.payload
            return Value(
                "struct",
                StructInstance(
                    inst.struct_type,
                    {name: field.duplicate() for name, field in inst.fields.items()},
                ),
            )
        return Value(self.kind, self.payload)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Value):
            return NotImplemented
        if self.kind != other.kind:
            return False
        if self.kind == "ref":
            return self.payload is other.payload
        return self.payload == other.payload

    def __hash__(self) -> int:
        if self.kind in ("number", "text"):
            return hash((self.kind, self.payload))
        return id(self)

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        return f"Value({self.kind}, {self.payload!r})"


def wrap(obj: Any) -> Value:
    """Lift a host object into a :class:`Value`."""

    if isinstance(obj, Value):
        return obj
    if isinstance(obj, bool):
        raise TypeError("Booleans have no Mira value representation")
    if isinstance(obj, (int, float)):
        return Value.number(obj)
    if isinstance(obj, str):
        return Value.text(obj)
    if isinstance(obj, StructInstance):
        return Value.struct(obj)
    if isinstance(obj, Handle):
        return Value.handle(obj)
    if isinstance(obj, Cell):
        return Value.ref(obj)
    raise TypeError(f"Cannot convert {type(obj).__name__} to a Mira value")


class Cell:
    """A storage location. Aliases share one cell; duplicates get a fresh one."""

    def __init__(self, value: Value, owner: "Scope | None" = None):
        self._value = wrap(value)
        self.owner = owner
        self.released = False

    @property
    def value(self) -> Value:
        if self.released:
            raise DanglingReferenceError(
                f"Storage owned by released scope {_scope_path(self.owner)} was accessed"
            )
        return self._value

    @value.setter
    def value(self, new_value: Value) -> None:
        if self.released:
            raise DanglingReferenceError(
                f"Storage owned by released scope {_scope_path(self.owner)} was written"
            )
        self._value = wrap(new_value)

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        owner = self.owner.name if self.owner else "?"
        return f"<Cell@{owner} {self._value!r}>"


class Binding:
    def __init__(
        self,
        name: str,
        cell: Cell | None,
        mutable: bool = False,
        *,
        mode: str = "owned",
        pack: tuple[Value, ...] | None = None,
    ):
        self.name = name
        self.cell = cell
        self.mutable = mutable
        self.mode = mode
        # Variadic collectors hold an ordered tuple of reference values instead of a cell.
        self.pack = pack

    @property
    def value(self) -> Value:
        if self.cell is None:
            raise TypeError(f"'{self.name}' is an argument pack, not a single value")
        return self.cell.value

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        flag = "mut " if self.mutable else ""
        return f"<Binding {flag}{self.name} [{self.mode}]>"


class Scope:
    """Ordered bindings for one call frame or block."""

    def __init__(self, name: str, parent: "Scope | None" = None, *, frame: bool = False):
        self.name = name
        self.parent = parent
        self.frame = frame
        self.bindings: dict[str, Binding] = {}
        self.owned: list[Cell] = []
        self.released = False

    def declare(self, binding: Binding) -> Binding:
        if binding.name in self.bindings:
            raise RedefinitionError(binding.name, _scope_path(self))
        self.bindings[binding.name] = binding
        return binding

    def new_cell(self, value: Value) -> Cell:
        cell = Cell(value, owner=self)
        self.owned.append(cell)
        return cell

    def find(self, name: str) -> Optional[Binding]:
        scope: Scope | None = self
        while scope is not None:
            binding = scope.bindings.get(name)
            if binding is not None:
                return binding
            scope = scope.parent
        return None

    def release(self) -> None:
        for cell in self.owned:
            cell.released = True
        self.released = True

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        return f"Scope({self.name})"


def _refs_into(value: Value, scope: Scope) -> Iterator[Cell]:
    if value.kind == "ref" and value.payload.owner is scope:
        yield value.payload
    elif value.kind == "struct":
        for field in value.payload.fields.values():
            yield from _refs_into(field, scope)


class Environment:
    """Stack of scopes rooted at a module-level global scope."""

    def __init__(self, name: str = "global"):
        self.globals = Scope(name)
        self.stack: list[Scope] = [self.globals]

    @property
    def current(self) -> Scope:
        return self.stack[-1]

    @property
    def depth(self) -> int:
        return len(self.stack)

    def push(self, name: str, *, frame: bool = False) -> Scope:
        # Call frames see the globals, not the caller's locals.
        parent = self.globals if frame else self.current
        scope = Scope(name, parent, frame=frame)
        self.stack.append(scope)
        return scope

    def pop(self, scope: Scope | None = None, result: Value | None = None) -> Scope:
        top = self.current
        if top is self.globals:
            raise RuntimeError("Cannot pop the global scope")
        if scope is not None and scope is not top:
            raise RuntimeError(f"Scope {scope.name} is not the innermost scope")
        self.stack.pop()
        top.release()
        if result is not None:
            escaped = list(_refs_into(result, top))
            if escaped:
                raise DanglingReferenceError(
                    f"Reference to storage of {_scope_path(top)} escapes its scope"
                )
        return top

    @contextmanager
    def scope(self, name: str, *, frame: bool = False):
        scope = self.push(name, frame=frame)
        try:
            yield scope
        finally:
            if not scope.released:
                self.pop(scope)

    def define(self, name: str, value: Any, mutable: bool = False) -> Binding:
        scope = self.current
        cell = scope.new_cell(wrap(value))
        return scope.declare(Binding(name, cell, mutable))

    def alias(self, name: str, cell: Cell, mutable: bool) -> Binding:
        """Bind *name* in the current scope to existing storage."""

        return self.current.declare(Binding(name, cell, mutable, mode="alias"))

    def collect(self, name: str, refs: list[Value]) -> Binding:
        """Bind a variadic collector to an ordered pack of references."""

        return self.current.declare(Binding(name, None, False, mode="variadic", pack=tuple(refs)))

    def binding(self, name: str) -> Binding:
        binding = self.current.find(name)
        if binding is None:
            raise UnboundNameError(name, _scope_path(self.current))
        return binding

    def lookup(self, name: str) -> Value:
        return self.binding(name).value

    def assign(self, name: str, value: Any) -> None:
        binding = self.binding(name)
        if binding.cell is None or not binding.mutable:
            raise ImmutableBindingError(name)
        binding.cell.value = wrap(value)

    def is_bound(self, name: str) -> bool:
        return self.current.find(name) is not None


def deref(value: Value) -> Value:
    """Follow reference values to the storage they point at."""

    seen = 0
    while value.kind == "ref":
        value = value.payload.value
        seen += 1
        if seen > 64:
            raise RuntimeError("Reference chain too deep")
    return value


__all__ = [
    "Binding",
    "Cell",
    "Environment",
    "Handle",
    "NULL_HANDLE_ADDRESS",
    "Scope",
    "StructInstance",
    "Value",
    "_scope_path",
    "deref",
    "wrap",
]
