"""Top-level declaration collection for one Mira module."""
from __future__ import annotations

from typing import Any, Iterable, Mapping

from ..constants import RESERVED_ROLES, RESERVED_TYPE_NAMES
from ..errors import (
    CyclicImportError,
    NativeBindingError,
    RedefinitionError,
    RoleError,
    UnboundNameError,
)
from ..ffi import NativeDeclaration, NativeFunction, bind_native
from .aliasing import FunctionDecl
from .core import Value, wrap
from .roles import RoleRegistry
from .traits import Impl, MethodSignature, StructType, TraitDecl


class Module:
    def __init__(self, name: str = "main"):
        self.name = name
        self.structs: dict[str, StructType] = {}
        self.traits: dict[str, TraitDecl] = {}
        self.impls: list[Impl] = []
        self.functions: dict[str, FunctionDecl] = {}
        self.externals: dict[str, NativeDeclaration] = {}
        self.natives: dict[str, NativeFunction] = {}
        self.statics: dict[str, Value] = {}
        self.exports: dict[str, str] = {}
        self.roles: dict[str, Any] = {}
        # local name -> (source module, exported name)
        self.imports: dict[str, tuple[Module, str]] = {}

    def is_defined(self, name: str) -> bool:
        return (
            name in self.structs
            or name in self.traits
            or name in self.functions
            or name in self.externals
            or name in self.statics
            or name in self.imports
        )

    def _claim(self, name: str) -> None:
        if self.is_defined(name):
            raise RedefinitionError(name, self.name)

    def declare_struct(self, name: str, fields: Iterable[Any] = ()) -> StructType:
        if name in RESERVED_TYPE_NAMES:
            raise RedefinitionError(name, "reserved type names")
        self._claim(name)
        struct = StructType(name, fields)
        self.structs[name] = struct
        return struct

    def declare_trait(
        self,
        name: str,
        methods: Iterable[MethodSignature | Any] = (),
        defaults: Iterable[Any] = (),
    ) -> TraitDecl:
        self._claim(name)
        trait = TraitDecl(name, methods, defaults)
        self.traits[name] = trait
        return trait

    def declare_function(self, decl: FunctionDecl) -> FunctionDecl:
        self._claim(decl.name)
        self.functions[decl.name] = decl
        return decl

    def declare_external(
        self,
        decl: NativeDeclaration | Mapping[str, Any],
        implementation: Any = None,
        *,
        library: Any = None,
        lazy: bool = False,
    ) -> NativeDeclaration:
        """Declare a native function; unless *lazy*, bind it right away."""

        if not isinstance(decl, NativeDeclaration):
            decl = NativeDeclaration.from_dict(dict(decl))
        self._claim(decl.name)
        if not lazy:
            self.natives[decl.name] = bind_native(decl, implementation, library=library)
        self.externals[decl.name] = decl
        return decl

    def bind_external(self, name: str, implementation: Any = None, *, library: Any = None) -> NativeFunction:
        if name not in self.externals:
            raise UnboundNameError(name, self.name)
        if name in self.natives:
            raise NativeBindingError(name, "already bound")
        bound = bind_native(self.externals[name], implementation, library=library)
        self.natives[name] = bound
        return bound

    def declare_static(self, name: str, value: Any) -> Value:
        self._claim(name)
        self.statics[name] = wrap(value)
        return self.statics[name]

    def _lookup(self, table: dict[str, Any], kind: type, name: str) -> Any:
        if name in table:
            return table[name]
        if name in self.imports:
            found = self.resolve(name)
            if isinstance(found, kind):
                return found
        raise UnboundNameError(name, self.name)

    def _struct(self, name: str) -> StructType:
        return self._lookup(self.structs, StructType, name)

    def _trait(self, name: str) -> TraitDecl:
        return self._lookup(self.traits, TraitDecl, name)

    def declare_impl(self, struct_name: str, trait_name: str, methods: Iterable[Any]) -> Impl:
        impl = Impl(self._struct(struct_name), self._trait(trait_name), methods)
        self.impls.append(impl)
        return impl

    def declare_methods(self, struct_name: str, methods: Iterable[Any]) -> StructType:
        struct = self._struct(struct_name)
        for method in methods:
            struct.add_method(method)
        return struct

    def export(self, name: str, as_name: str | None = None) -> None:
        if not self.is_defined(name):
            raise UnboundNameError(name, self.name)
        exported = as_name or name
        if exported in self.exports:
            raise RedefinitionError(exported, f"{self.name} exports")
        self.exports[exported] = name

    def resolve(self, name: str) -> Any:
        local = self.exports.get(name, name)
        for table in (self.structs, self.traits, self.functions, self.natives, self.externals, self.statics):
            if local in table:
                return table[local]
        if local in self.imports:
            source, exported = self.imports[local]
            return source.resolve(exported)
        raise UnboundNameError(name, self.name)

    def dependencies(self) -> list["Module"]:
        seen: list[Module] = []
        for source, _ in self.imports.values():
            if source not in seen:
                seen.append(source)
        return seen

    def _import_path(self, target: "Module", path: list[str]) -> list[str] | None:
        path = path + [self.name]
        if self is target:
            return path
        for dep in self.dependencies():
            found = dep._import_path(target, path)
            if found:
                return found
        return None

    def import_from(self, other: "Module", name: str, as_name: str | None = None) -> Any:
        """Bind a name *other* exports into this module under *as_name*."""

        cycle = other._import_path(self, [self.name])
        if cycle:
            raise CyclicImportError(cycle)
        if name not in other.exports:
            raise UnboundNameError(name, f"{other.name} exports")
        local = as_name or name
        self._claim(local)
        self.imports[local] = (other, name)
        return other.resolve(name)

    def tag_role(self, role: str, target: Any) -> None:
        """Mark a declaration (by name) or a host object as fulfilling *role*."""

        if role not in RESERVED_ROLES:
            raise RoleError(f"Unknown role tag: {role}")
        if role in self.roles:
            raise RoleError(f"Role '{role}' is already tagged in module {self.name}")
        if isinstance(target, str) and not self.is_defined(target):
            raise UnboundNameError(target, self.name)
        self.roles[role] = target

    def _role_target(self, target: Any, interpreter: Any) -> tuple[Any, str]:
        if not isinstance(target, str):
            return target, f"{self.name}::{getattr(target, 'name', type(target).__name__)}"
        source = f"{self.name}::{target}"
        if target in self.imports:
            origin, exported = self.imports[target]
            return origin._role_target(origin.exports[exported], interpreter)
        if target in self.natives:
            return self.natives[target], source
        if target in self.functions:
            if interpreter is None:
                raise RoleError(f"Role target {source} is a function; an interpreter is required")
            decl = self.functions[target]
            return (lambda *args: interpreter.call(decl, *args)), source
        raise RoleError(f"{source} cannot fulfil a role")

    def install_roles(self, registry: RoleRegistry, interpreter: Any = None) -> dict[str, str]:
        """Re-tag every role this module declares; returns role -> source."""

        installed = {}
        for role, target in self.roles.items():
            resolved, source = self._role_target(target, interpreter)
            registry.retag(role, resolved, source=source)
            installed[role] = source
        return installed

    def install(self, interpreter: Any) -> None:
        """Make this module's functions, natives and statics visible to *interpreter*."""

        for decl in self.functions.values():
            interpreter.define_function(decl)
        for name, native in self.natives.items():
            interpreter.functions[name] = native
        for name, value in self.statics.items():
            interpreter.env.define(name, value, mutable=False)
        for local, (origin, exported) in self.imports.items():
            found = origin.resolve(exported)
            if isinstance(found, (FunctionDecl, NativeFunction)):
                interpreter.functions[local] = found
            elif isinstance(found, Value):
                interpreter.env.define(local, found, mutable=False)

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        return f"<module {self.name}>"


__all__ = ["Module"]
