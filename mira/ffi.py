"""Native binding declarations, registry and call marshaling."""

from dataclasses import dataclass
import ctypes
import ctypes.util
import inspect
import json
import re

from .constants import NATIVE_KIND_ALIASES, NATIVE_PARAM_KINDS, NATIVE_RETURN_KINDS
from .errors import AllocatorError, NativeBindingError, NativeCallMismatch
from .runtime.core import Handle, Value
from .runtime.target import Target

CTYPES_KINDS = {
    "usize": ctypes.c_size_t,
    "ptr": ctypes.c_void_p,
    "bytes": ctypes.c_char_p,
    "void": None,
}


def _normalize_kind(name, kind):
    key = (kind or "").strip().lower()
    if key not in NATIVE_KIND_ALIASES:
        raise NativeBindingError(name, f"unknown native kind '{kind}'")
    return NATIVE_KIND_ALIASES[key]


@dataclass
class NativeDeclaration:
    """Fixed signature of a foreign function: name, parameter kinds, return kind."""

    name: str
    param_kinds: list
    return_kind: str = "void"
    symbol: str | None = None
    library: str | None = None

    def __post_init__(self):
        self.name = (self.name or "").strip()
        if not self.name:
            raise NativeBindingError("<anonymous>", "declaration requires a name")
        kinds = []
        for kind in self.param_kinds or []:
            normalized = _normalize_kind(self.name, kind)
            if normalized not in NATIVE_PARAM_KINDS:
                raise NativeBindingError(
                    self.name, f"'{kind}' is not a valid parameter kind"
                )
            kinds.append(normalized)
        self.param_kinds = kinds
        self.return_kind = _normalize_kind(self.name, self.return_kind)
        if self.return_kind not in NATIVE_RETURN_KINDS:
            raise NativeBindingError(
                self.name, f"'{self.return_kind}' is not a valid return kind"
            )
        self.symbol = (self.symbol or "").strip() or self.name

    @property
    def arity(self):
        return len(self.param_kinds)

    def to_dict(self):
        data = {
            "name": self.name,
            "param_kinds": list(self.param_kinds),
            "return_kind": self.return_kind,
        }
        if self.symbol != self.name:
            data["symbol"] = self.symbol
        if self.library:
            data["library"] = self.library
        return data

    @classmethod
    def from_dict(cls, data):
        if not isinstance(data, dict):
            raise TypeError("Native declaration must be built from a mapping")
        params = data.get("param_kinds") or data.get("params") or data.get("args") or []
        ret = data.get("return_kind") or data.get("returns") or "void"
        return cls(
            data.get("name"),
            params,
            ret,
            symbol=data.get("symbol"),
            library=data.get("library"),
        )

    def __str__(self):
        return f"{self.name}({', '.join(self.param_kinds)}) -> {self.return_kind}"


NATIVE_REGISTRY = {}


INLINE_NATIVE_PATTERN = re.compile(
    r"^\s*(?P<name>[A-Za-z_][A-Za-z0-9_]*)\s*"
    r"\((?P<args>[^)]*)\)\s*(?:->\s*(?P<ret>[A-Za-z_*]+))?\s*"
    r"(?:@\s*(?P<lib>\S+))?\s*$"
)


def parse_inline_natives(schema):
    """Parse ``name(kind, ...) -> kind [@ library]`` lines into declarations."""

    if not schema:
        return []

    declarations = []
    for line in schema.splitlines():
        entry = line.strip()
        if not entry or entry.startswith("#"):
            continue
        match = INLINE_NATIVE_PATTERN.match(entry)
        if not match:
            raise NativeBindingError(entry, "invalid inline native declaration")
        args = match.group("args").strip()
        kinds = [a.strip() for a in args.split(",") if a.strip()] if args else []
        declarations.append(
            NativeDeclaration(
                match.group("name"),
                kinds,
                match.group("ret") or "void",
                library=match.group("lib"),
            )
        )
    return declarations


def _normalize_native_declarations(spec):
    if spec is None:
        return []
    if isinstance(spec, NativeDeclaration):
        return [spec]
    if isinstance(spec, str):
        trimmed = spec.strip()
        if not trimmed:
            return []
        if trimmed[0] in "[{":
            return _normalize_native_declarations(json.loads(trimmed))
        return parse_inline_natives(trimmed)
    if isinstance(spec, dict):
        if "natives" in spec and isinstance(spec["natives"], list):
            return _normalize_native_declarations(spec["natives"])
        return [NativeDeclaration.from_dict(spec)]
    if isinstance(spec, (list, tuple)):
        decls = []
        for item in spec:
            decls.extend(_normalize_native_declarations(item))
        return decls
    raise TypeError(f"Unsupported native spec type: {type(spec)!r}")


def register_native_declarations(spec, *, reset=False):
    """Register one or more declarations in the global registry."""

    if reset:
        NATIVE_REGISTRY.clear()
    decls = _normalize_native_declarations(spec)
    for decl in decls:
        if decl.name in NATIVE_REGISTRY:
            raise NativeBindingError(decl.name, "duplicate declaration")
        NATIVE_REGISTRY[decl.name] = decl
    return decls


def clear_native_registry():
    NATIVE_REGISTRY.clear()


def get_registered_native_declarations():
    """Return a snapshot of the currently registered declarations."""

    return {name: decl for name, decl in NATIVE_REGISTRY.items()}


def load_library(name=None):
    """Open a shared library by short name, path, or the running process (``None``)."""

    if name is None:
        return ctypes.CDLL(None)
    path = name
    if "/" not in name and "." not in name:
        path = ctypes.util.find_library(name)
        if path is None:
            raise NativeBindingError(name, "library not found")
    try:
        return ctypes.CDLL(path)
    except OSError as exc:
        raise NativeBindingError(name, f"cannot load library: {exc}") from exc


def _host_accepts(fn, arity):
    try:
        sig = inspect.signature(fn)
    except (TypeError, ValueError):
        return True
    try:
        sig.bind(*range(arity))
    except TypeError:
        return False
    return True


class NativeFunction:
    """A declaration bound to either a C symbol or a host implementation."""

    def __init__(self, decl, raw, *, host=False, target=None):
        self.decl = decl
        self.raw = raw
        self.host = host
        self.target = target or Target.host()
        self.calls = 0

    @property
    def name(self):
        return self.decl.name

    def _marshal_arg(self, index, kind, value):
        if not isinstance(value, Value):
            raise NativeCallMismatch(
                f"{self.name} argument {index} expects a Mira value, got {type(value).__name__}"
            )
        if kind == "usize":
            n = value.payload
            if value.kind != "number" or not isinstance(n, int):
                raise NativeCallMismatch(
                    f"{self.name} argument {index} expects usize but got {value.kind}"
                )
            if n < 0 or n > self.target.word_max:
                raise NativeCallMismatch(
                    f"{self.name} argument {index} value {n} does not fit a "
                    f"{self.target.word_bits}-bit word"
                )
            return n
        if kind == "ptr":
            if value.kind != "handle":
                raise NativeCallMismatch(
                    f"{self.name} argument {index} expects ptr but got {value.kind}"
                )
            handle = value.payload
            if handle.released:
                raise AllocatorError(
                    f"{self.name} argument {index} uses a released handle",
                    size=handle.size,
                    handle=handle,
                )
            if handle.is_null and not self.host:
                return None
            return handle.address
        if value.kind != "text":
            raise NativeCallMismatch(
                f"{self.name} argument {index} expects bytes but got {value.kind}"
            )
        return value.payload.encode("utf-8")

    def _unmarshal(self, raw):
        kind = self.decl.return_kind
        if kind == "void":
            return None
        if kind == "usize":
            if raw is None:
                raw = 0
            if not isinstance(raw, int) or isinstance(raw, bool):
                raise NativeCallMismatch(f"{self.name} returned {raw!r} for usize")
            return Value.number(raw)
        if kind == "ptr":
            if raw is None:
                raw = 0
            if not isinstance(raw, int) or isinstance(raw, bool):
                raise NativeCallMismatch(f"{self.name} returned {raw!r} for ptr")
            return Value.handle(Handle(raw))
        if raw is None:
            raw = b""
        if isinstance(raw, str):
            return Value.text(raw)
        if not isinstance(raw, (bytes, bytearray)):
            raise NativeCallMismatch(f"{self.name} returned {raw!r} for bytes")
        try:
            return Value.text(bytes(raw).decode("utf-8"))
        except UnicodeDecodeError:
            raise NativeCallMismatch(f"{self.name} returned bytes that are not valid UTF-8") from None

    def __call__(self, *args):
        if len(args) != self.decl.arity:
            raise NativeCallMismatch(
                f"{self.name} expects {self.decl.arity} arguments, got {len(args)}"
            )
        native_args = [
            self._marshal_arg(i, kind, value)
            for i, (kind, value) in enumerate(zip(self.decl.param_kinds, args))
        ]
        self.calls += 1
        return self._unmarshal(self.raw(*native_args))

    def __repr__(self):  # pragma: no cover - representation helper
        origin = "host" if self.host else "native"
        return f"<NativeFunction {self.decl} [{origin}]>"


def bind_native(decl, implementation=None, *, library=None, target=None):
    """Bind a declaration, validating it before any call can happen."""

    if isinstance(decl, str):
        if decl not in NATIVE_REGISTRY:
            raise NativeBindingError(decl, "not declared")
        decl = NATIVE_REGISTRY[decl]

    if implementation is not None:
        if not callable(implementation):
            raise NativeBindingError(decl.name, "implementation is not callable")
        if not _host_accepts(implementation, decl.arity):
            raise NativeBindingError(
                decl.name, f"implementation does not accept {decl.arity} arguments"
            )
        return NativeFunction(decl, implementation, host=True, target=target)

    lib = library
    if lib is None or isinstance(lib, str):
        lib = load_library(lib or decl.library)
    try:
        fn = getattr(lib, decl.symbol)
    except AttributeError:
        raise NativeBindingError(decl.name, f"symbol '{decl.symbol}' not found") from None
    fn.argtypes = [CTYPES_KINDS[k] for k in decl.param_kinds]
    fn.restype = CTYPES_KINDS[decl.return_kind]
    return NativeFunction(decl, fn, target=target)


__all__ = [
    "CTYPES_KINDS",
    "NATIVE_REGISTRY",
    "NativeDeclaration",
    "NativeFunction",
    "bind_native",
    "clear_native_registry",
    "get_registered_native_declarations",
    "load_library",
    "parse_inline_natives",
    "register_native_declarations",
]
