"""Error taxonomy shared by every Mira runtime component."""


class MiraError(Exception):
    """Base class for recoverable runtime errors."""


class UnboundNameError(MiraError, NameError):
    def __init__(self, name, where=None):
        self.name = name
        self.where = where
        detail = f" in {where}" if where else ""
        super().__init__(f"Unbound name '{name}'{detail}")


class RedefinitionError(MiraError, ValueError):
    def __init__(self, name, where=None):
        self.name = name
        self.where = where
        detail = f" in {where}" if where else ""
        super().__init__(f"'{name}' is already defined{detail}")


class ImmutableBindingError(MiraError, TypeError):
    def __init__(self, name):
        self.name = name
        super().__init__(f"Cannot assign to immutable binding '{name}'")


class DanglingReferenceError(MiraError, RuntimeError):
    """A reference outlived the scope that owns its storage."""


class CyclicImportError(MiraError, ImportError):
    def __init__(self, chain):
        self.chain = list(chain)
        super().__init__(f"Cyclic module import: {' -> '.join(self.chain)}")


class ConformanceError(MiraError, TypeError):
    """An impl block does not match its trait exactly."""

    def __init__(self, struct, trait, *, missing=(), extra=(), mismatched=(), reason=None):
        self.struct = struct
        self.trait = trait
        self.missing = sorted(missing)
        self.extra = sorted(extra)
        self.mismatched = sorted(mismatched)
        parts = []
        if reason:
            parts.append(reason)
        if self.missing:
            parts.append(f"missing: {', '.join(self.missing)}")
        if self.extra:
            parts.append(f"not in trait: {', '.join(self.extra)}")
        if self.mismatched:
            parts.append(f"signature mismatch: {', '.join(self.mismatched)}")
        super().__init__(f"{struct} does not implement {trait}: {'; '.join(parts)}")


class AllocatorError(MiraError, MemoryError):
    def __init__(self, message, *, size=None, handle=None):
        self.size = size
        self.handle = handle
        super().__init__(message)


class NativeBindingError(MiraError, ValueError):
    def __init__(self, name, message):
        self.name = name
        super().__init__(f"Native declaration {name}: {message}")


class RoleError(MiraError, LookupError):
    """Unknown role tag or conflicting role tagging."""


class TargetParsingError(MiraError, ValueError):
    """Malformed ``arch-os[-abi]`` target triple."""


class FatalError(BaseException):
    """Non-recoverable condition; ordinary ``except Exception`` will not catch it."""


class Halt(FatalError):
    def __init__(self, message):
        self.message = message
        super().__init__(message)


class NativeCallMismatch(FatalError):
    """A value of the wrong kind reached a native parameter slot."""


class AllocatorUninitialized(FatalError):
    """An allocation capability was used before an implementor was tagged."""


__all__ = [
    "MiraError",
    "UnboundNameError",
    "RedefinitionError",
    "ImmutableBindingError",
    "DanglingReferenceError",
    "CyclicImportError",
    "ConformanceError",
    "AllocatorError",
    "NativeBindingError",
    "RoleError",
    "TargetParsingError",
    "FatalError",
    "Halt",
    "NativeCallMismatch",
    "AllocatorUninitialized",
]
