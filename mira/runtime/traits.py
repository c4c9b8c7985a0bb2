"""Struct types, traits and declaration-time conformance checking."""
from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from ..errors import ConformanceError, RedefinitionError, UnboundNameError
from .core import StructInstance, Value, deref, wrap


@dataclass(frozen=True)
class MethodSignature:
    name: str
    arity: int
    receiver: bool = True

    def __str__(self) -> str:
        head = "self" if self.receiver else "static"
        return f"{self.name}({head}, {self.arity})"


def _signature_of(method: Any) -> MethodSignature:
    if isinstance(method, MethodSignature):
        return method
    return method.signature


class StructType:
    """A named record with ordered fields, inherent methods and declared impls."""

    def __init__(self, name: str, fields: Iterable[str | tuple[str, str | None]] = ()):
        self.name = name
        self.fields: list[tuple[str, str | None]] = []
        for entry in fields:
            field, type_name = (entry, None) if isinstance(entry, str) else entry
            if any(existing == field for existing, _ in self.fields):
                raise RedefinitionError(field, name)
            self.fields.append((field, type_name))
        self.methods: dict[str, Any] = {}
        self.impls: dict[str, "Impl"] = {}

    @property
    def field_names(self) -> list[str]:
        return [name for name, _ in self.fields]

    def instantiate(self, values: Mapping[str, Any] | None = None, **kwargs) -> Value:
        supplied = dict(values or {}, **kwargs)
        unknown = [k for k in supplied if k not in self.field_names]
        if unknown:
            raise UnboundNameError(unknown[0], self.name)
        missing = [k for k in self.field_names if k not in supplied]
        if missing:
            raise TypeError(f"{self.name} is missing fields: {', '.join(missing)}")
        ordered = {name: wrap(supplied[name]) for name in self.field_names}
        return Value.struct(StructInstance(self, ordered))

    def add_method(self, method: Any) -> Any:
        if method.name in self.methods:
            raise RedefinitionError(method.name, self.name)
        self.methods[method.name] = method
        return method

    def impl_for(self, trait: "TraitDecl | str") -> "Impl | None":
        key = trait if isinstance(trait, str) else trait.name
        return self.impls.get(key)

    def implements(self, trait: "TraitDecl | str") -> bool:
        return self.impl_for(trait) is not None

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        return f"<struct {self.name} {self.field_names}>"


class TraitDecl:
    """Required method signatures plus optional default bodies."""

    def __init__(
        self,
        name: str,
        methods: Iterable[MethodSignature | Any] = (),
        defaults: Iterable[Any] = (),
    ):
        self.name = name
        self.signatures: dict[str, MethodSignature] = {}
        for method in methods:
            sig = _signature_of(method)
            if sig.name in self.signatures:
                raise RedefinitionError(sig.name, name)
            self.signatures[sig.name] = sig
        self.defaults: dict[str, Any] = {}
        for body in defaults:
            sig = _signature_of(body)
            declared = self.signatures.get(sig.name)
            if declared is None:
                # A default body also declares its signature.
                self.signatures[sig.name] = sig
            elif declared != sig:
                raise ConformanceError(
                    "<default body>", name, mismatched=[sig.name], reason="default body disagrees with its signature"
                )
            if sig.name in self.defaults:
                raise RedefinitionError(sig.name, name)
            self.defaults[sig.name] = body

    @property
    def required(self) -> set[str]:
        return {n for n in self.signatures if n not in self.defaults}

    def shape_matches(self, methods: Mapping[str, Any]) -> bool:
        """Would *methods* satisfy this trait if an impl were declared?"""

        for name in self.required:
            if name not in methods or _signature_of(methods[name]) != self.signatures[name]:
                return False
        return True

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        return f"<trait {self.name} {sorted(self.signatures)}>"


def check_conformance(struct: StructType, trait: TraitDecl, methods: Iterable[Any]) -> dict[str, Any]:
    """Validate an impl method table exactly against *trait*; return it keyed by name."""

    table: dict[str, Any] = {}
    duplicates = []
    for method in methods:
        sig = _signature_of(method)
        if sig.name in table:
            duplicates.append(sig.name)
        table[sig.name] = method
    if duplicates:
        raise ConformanceError(
            struct.name, trait.name, mismatched=duplicates, reason="method defined twice"
        )

    missing = trait.required - table.keys()
    extra = table.keys() - trait.signatures.keys()
    mismatched = [
        name
        for name in table.keys() & trait.signatures.keys()
        if _signature_of(table[name]) != trait.signatures[name]
    ]
    if missing or extra or mismatched:
        raise ConformanceError(
            struct.name, trait.name, missing=missing, extra=extra, mismatched=mismatched
        )
    return table


class Impl:
    """The verified method table binding one struct type to one trait.

    Construction performs the conformance check and registers the impl on
    the struct, so an instance only ever exists for a conforming, unique
    (struct, trait) pair.
    """

    def __init__(self, struct: StructType, trait: TraitDecl, methods: Iterable[Any] | Mapping[str, Any]):
        if isinstance(methods, Mapping):
            methods = list(methods.values())
        if trait.name in struct.impls:
            raise ConformanceError(
                struct.name, trait.name, reason="impl already declared for this pair"
            )
        table = check_conformance(struct, trait, methods)
        self.struct = struct
        self.trait = trait
        self.table = MappingProxyType(table)
        struct.impls[trait.name] = self

    def resolve(self, name: str) -> Any:
        """Implementor override first, trait default otherwise."""

        if name in self.table:
            return self.table[name]
        if name in self.trait.defaults:
            return self.trait.defaults[name]
        raise UnboundNameError(name, f"impl {self.trait.name} for {self.struct.name}")

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        return f"<impl {self.trait.name} for {self.struct.name}>"


def struct_type_of(value: Value) -> StructType:
    value = deref(value)
    if value.kind != "struct":
        raise TypeError(f"Expected a struct value, got {value.kind}")
    return value.payload.struct_type


def require_trait(value: Value, trait: TraitDecl) -> Impl:
    """Nominal check: the value's type must have *declared* an impl of *trait*."""

    struct = struct_type_of(value)
    impl = struct.impl_for(trait)
    if impl is None:
        reason = "no impl declared"
        if trait.shape_matches(struct.methods):
            reason += " (methods match structurally, but conformance must be declared)"
        raise ConformanceError(struct.name, trait.name, reason=reason)
    return impl


def find_method(struct: StructType, name: str) -> Any:
    """Untyped lookup: inherent methods, then any impl that provides *name*."""

    if name in struct.methods:
        return struct.methods[name]
    found = [impl.resolve(name) for impl in struct.impls.values() if name in impl.trait.signatures]
    if not found:
        raise UnboundNameError(name, struct.name)
    if len(found) > 1:
        raise TypeError(f"Method '{name}' on {struct.name} is provided by several traits")
    return found[0]


__all__ = [
    "Impl",
    "MethodSignature",
    "StructType",
    "TraitDecl",
    "check_conformance",
    "find_method",
    "require_trait",
    "struct_type_of",
]
