"""Function declarations and the call-time aliasing resolver.

Every parameter aliases the caller's storage unless it is marked for
duplication. A duplicated parameter receives an independent copy produced
by whichever declaration holds the ``copy`` role; a trailing variadic
collector gathers the remaining arguments as references, in call order.
"""
from __future__ import annotations

from typing import Any, Callable, Iterable, Optional

from ..constants import PARAM_MODES, ROLE_COPY
from ..errors import ImmutableBindingError, RedefinitionError, UnboundNameError
from .core import Binding, Cell, Environment, Value, deref, wrap
from .roles import ROLE_REGISTRY, RoleRegistry
from .traits import MethodSignature, TraitDecl, find_method, require_trait, struct_type_of


class Param:
    def __init__(
        self,
        name: str,
        mode: str = "alias",
        *,
        variadic: bool = False,
        mutable: Optional[bool] = None,
        trait: TraitDecl | None = None,
    ):
        if mode not in PARAM_MODES:
            raise ValueError(f"Unknown parameter mode: {mode}")
        if variadic and mode == "copy":
            raise ValueError(f"Variadic collector '{name}' always aliases; it cannot be copied")
        self.name = name
        self.mode = mode
        self.variadic = variadic
        self.mutable = mutable
        self.trait = trait

    @classmethod
    def parse(cls, text: str) -> "Param":
        """Accept ``a``, ``copy a`` and ``...rest`` shorthands."""

        text = text.strip()
        if text.startswith("..."):
            return cls(text[3:].strip(), variadic=True)
        if text.startswith("copy "):
            return cls(text[5:].strip(), "copy")
        return cls(text)

    @property
    def duplicated(self) -> bool:
        return self.mode == "copy"

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        prefix = "..." if self.variadic else ("copy " if self.duplicated else "")
        return f"Param({prefix}{self.name})"


class FunctionDecl:
    """Ordered parameters plus a host-level body ``body(frame) -> value | None``."""

    def __init__(
        self,
        name: str,
        params: Iterable[Param | str] = (),
        body: Callable[["Frame"], Any] | None = None,
        *,
        receiver: bool = False,
        receiver_mode: str = "alias",
    ):
        self.name = name
        self.params = [p if isinstance(p, Param) else Param.parse(p) for p in params]
        self.body = body
        self.receiver = receiver
        self.receiver_mode = receiver_mode
        seen = set()
        for index, param in enumerate(self.params):
            if param.name in seen:
                raise RedefinitionError(param.name, name)
            seen.add(param.name)
            if param.variadic and index != len(self.params) - 1:
                raise ValueError(f"Variadic collector '{param.name}' must be the last parameter of {name}")

    @property
    def arity(self) -> int:
        return len(self.params)

    @property
    def variadic(self) -> Optional[Param]:
        if self.params and self.params[-1].variadic:
            return self.params[-1]
        return None

    @property
    def signature(self) -> MethodSignature:
        return MethodSignature(self.name, self.arity, self.receiver)

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        return f"<fn {self.name}({', '.join(map(repr, self.params))})>"


class Var:
    """Call-site argument naming caller storage."""

    def __init__(self, name: str):
        self.name = name

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        return f"Var({self.name})"


class _Argument:
    __slots__ = ("cell", "mutable", "label")

    def __init__(self, cell: Cell | None, mutable: bool, label: str):
        self.cell = cell
        self.mutable = mutable
        self.label = label


def default_duplicate(value: Value) -> Value:
    return value.duplicate()


class Frame:
    """What a function body sees: its own scope plus helpers for calls and storage."""

    def __init__(self, interpreter: "Interpreter", decl: FunctionDecl):
        self.interpreter = interpreter
        self.decl = decl

    @property
    def env(self) -> Environment:
        return self.interpreter.env

    def __getitem__(self, name: str) -> Value:
        return self.env.lookup(name)

    def __setitem__(self, name: str, value: Any) -> None:
        self.env.assign(name, value)

    def __contains__(self, name: str) -> bool:
        return self.env.is_bound(name)

    def define(self, name: str, value: Any, mutable: bool = False):
        return self.env.define(name, value, mutable)

    def rest(self, name: str) -> tuple[Value, ...]:
        binding = self.env.binding(name)
        if binding.pack is None:
            raise TypeError(f"'{name}' is not a variadic collector")
        return binding.pack

    def ref(self, name: str) -> Value:
        """Explicitly take a reference to a binding's storage."""

        return Value.ref(self.env.binding(name).cell)

    @staticmethod
    def load(ref: Value) -> Value:
        if ref.kind != "ref":
            raise TypeError(f"Expected a reference, got {ref.kind}")
        return ref.payload.value

    @staticmethod
    def store(ref: Value, value: Any) -> None:
        if ref.kind != "ref":
            raise TypeError(f"Expected a reference, got {ref.kind}")
        ref.payload.value = wrap(value)

    def get_field(self, name: str, field: str) -> Value:
        value = deref(self.env.lookup(name))
        if value.kind != "struct":
            raise TypeError(f"'{name}' is not a struct")
        return value.payload.get(field)

    def set_field(self, name: str, field: str, value: Any) -> None:
        binding = self.env.binding(name)
        if not binding.mutable:
            raise ImmutableBindingError(name)
        target = deref(binding.value)
        if target.kind != "struct":
            raise TypeError(f"'{name}' is not a struct")
        target.payload.set(field, value)

    def call(self, fn: Any, *args: Any) -> Optional[Value]:
        return self.interpreter.call(fn, *args)

    def call_method(self, receiver: Any, name: str, *args: Any) -> Optional[Value]:
        return self.interpreter.call_method(receiver, name, *args)

    def dispatch(self, receiver: Any, trait: TraitDecl, name: str, *args: Any) -> Optional[Value]:
        return self.interpreter.dispatch(receiver, trait, name, *args)

    def log(self, entry: str) -> None:
        self.interpreter.log.append(entry)


class Interpreter:
    """Direct, single-threaded call evaluation over one environment."""

    def __init__(
        self,
        module: Any = None,
        *,
        env: Environment | None = None,
        roles: RoleRegistry | None = None,
    ):
        self.module = module
        self.env = env or Environment(getattr(module, "name", "global"))
        self.roles = roles if roles is not None else ROLE_REGISTRY
        self.functions: dict[str, Any] = {}
        self.log: list[str] = []
        if module is not None:
            module.install(self)

    def define_function(self, decl: Any) -> Any:
        if decl.name in self.functions:
            raise RedefinitionError(decl.name, self.env.globals.name)
        self.functions[decl.name] = decl
        return decl

    def _resolve_callee(self, fn: Any) -> Any:
        if isinstance(fn, str):
            try:
                return self.functions[fn]
            except KeyError:
                raise UnboundNameError(fn, self.env.globals.name) from None
        return fn

    def _duplicator(self) -> Callable[[Value], Value]:
        return self.roles.resolve(ROLE_COPY)

    def _evaluate(self, arg: Any) -> _Argument:
        """Locate caller storage for *arg*, or mark it as a temporary."""

        if isinstance(arg, Var):
            binding = self.env.binding(arg.name)
            if binding.cell is None:
                raise TypeError(f"Argument pack '{arg.name}' cannot be passed as a single value")
            return _Argument(binding.cell, binding.mutable, arg.name)
        return _Argument(Cell(wrap(arg)), True, "<temp>")

    def _bind(self, decl: FunctionDecl, args: list[_Argument]) -> None:
        fixed = [p for p in decl.params if not p.variadic]
        collector = decl.variadic
        if len(args) < len(fixed) or (collector is None and len(args) > len(fixed)):
            expected = f"at least {len(fixed)}" if collector else str(len(fixed))
            raise TypeError(f"{decl.name}() takes {expected} arguments but {len(args)} were given")

        scope = self.env.current
        for param, arg in zip(fixed, args):
            if arg.cell.owner is None:
                arg.cell.owner = scope
                scope.owned.append(arg.cell)
            if param.duplicated:
                cell = scope.new_cell(self._duplicator()(arg.cell.value))
                scope.declare(Binding(param.name, cell, True, mode="copy"))
                self.log.append(f"bind:{param.name}=copy")
            else:
                mutable = arg.mutable if param.mutable is None else param.mutable
                if mutable and not arg.mutable:
                    raise ImmutableBindingError(arg.label)
                self.env.alias(param.name, arg.cell, mutable)
                self.log.append(f"bind:{param.name}=alias")
            if param.trait is not None:
                require_trait(arg.cell.value, param.trait)

        if collector is not None:
            extra = args[len(fixed):]
            refs = []
            for arg in extra:
                if arg.cell.owner is None:
                    arg.cell.owner = scope
                    scope.owned.append(arg.cell)
                refs.append(Value.ref(arg.cell))
            self.env.collect(collector.name, refs)
            self.log.append(f"bind:{collector.name}=variadic[{len(refs)}]")

    def _invoke(self, decl: FunctionDecl, args: list[_Argument], receiver: _Argument | None = None) -> Optional[Value]:
        scope = self.env.push(decl.name, frame=True)
        result = None
        try:
            if receiver is not None:
                self._bind(
                    FunctionDecl(decl.name, [Param("self", decl.receiver_mode)]),
                    [receiver],
                )
            self._bind(decl, args)
            if decl.body is not None:
                returned = decl.body(Frame(self, decl))
                result = None if returned is None else wrap(returned)
        except BaseException:
            if not scope.released:
                self.env.pop(scope)
            raise
        self.env.pop(scope, result)
        self.log.append(f"return:{decl.name}")
        return result

    def call(self, fn: Any, *args: Any) -> Optional[Value]:
        decl = self._resolve_callee(fn)
        self.log.append(f"call:{decl.name}")
        if not isinstance(decl, FunctionDecl):
            # Native bindings take plain values; nothing is aliased across the boundary.
            values = [self._evaluate(a).cell.value for a in args]
            return decl(*values)
        if decl.receiver:
            raise TypeError(f"{decl.name} is a method; call it through a receiver")
        evaluated = [self._evaluate(a) for a in args]
        return self._invoke(decl, evaluated)

    def _call_bound(self, decl: Any, receiver: _Argument, args: tuple) -> Optional[Value]:
        evaluated = [self._evaluate(a) for a in args]
        if not decl.receiver:
            return self._invoke(decl, evaluated)
        return self._invoke(decl, evaluated, receiver)

    def call_method(self, receiver: Any, name: str, *args: Any) -> Optional[Value]:
        """Untyped dynamic call: any method with a matching name will do."""

        target = self._evaluate(receiver)
        struct = struct_type_of(target.cell.value)
        decl = find_method(struct, name)
        self.log.append(f"call:{struct.name}.{name}")
        return self._call_bound(decl, target, args)

    def dispatch(self, receiver: Any, trait: TraitDecl, name: str, *args: Any) -> Optional[Value]:
        """Trait-typed call: the receiver's type must have declared an impl of *trait*."""

        target = self._evaluate(receiver)
        impl = require_trait(target.cell.value, trait)
        decl = impl.resolve(name)
        self.log.append(f"call:{impl.struct.name}.{trait.name}::{name}")
        return self._call_bound(decl, target, args)


__all__ = [
    "Frame",
    "FunctionDecl",
    "Interpreter",
    "Param",
    "Var",
    "default_duplicate",
]
