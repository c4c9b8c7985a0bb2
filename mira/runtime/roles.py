"""Role-tag registry: reserved runtime roles resolved by tag, never by symbol name."""
from __future__ import annotations

from typing import Any

from ..constants import RESERVED_ROLES, ROLE_ALLOCATOR
from ..errors import RoleError

ALLOCATOR_OPERATIONS = ("allocate", "reallocate", "release")


def _describe(target: Any) -> str:
    return getattr(target, "name", None) or getattr(target, "__name__", None) or type(target).__name__


def _validate_target(role: str, target: Any) -> None:
    if role == ROLE_ALLOCATOR:
        missing = [op for op in ALLOCATOR_OPERATIONS if not callable(getattr(target, op, None))]
        if missing:
            raise RoleError(
                f"{_describe(target)} cannot fulfil role '{role}': missing {', '.join(missing)}"
            )
    elif not callable(target):
        raise RoleError(f"{_describe(target)} cannot fulfil role '{role}': not callable")


class RoleBinding:
    """One generation of a role assignment; re-tagging produces the next generation."""

    def __init__(
        self,
        role: str,
        target: Any,
        *,
        source: str | None = None,
        generation: int = 0,
        history: list[dict[str, Any]] | None = None,
    ) -> None:
        self.role = role
        self.target = target
        self.source = source or _describe(target)
        self.generation = generation
        self.history = history or []

    def retag(self, target: Any, source: str | None = None) -> "RoleBinding":
        new_history = list(self.history)
        new_history.append({"action": "retag", "detail": self.source})
        return RoleBinding(
            self.role,
            target,
            source=source,
            generation=self.generation + 1,
            history=new_history,
        )

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        return f"<Role {self.role}->{self.source}@{self.generation}>"


class RoleRegistry:
    """Process-wide table of reserved roles."""

    def __init__(self) -> None:
        self._roles: dict[str, RoleBinding] = {}
        self.log: list[str] = []

    def tag(self, role: str, target: Any, *, source: str | None = None, replace: bool = False) -> RoleBinding:
        if role not in RESERVED_ROLES:
            raise RoleError(f"Unknown role tag: {role}")
        _validate_target(role, target)
        existing = self._roles.get(role)
        if existing is not None and not replace:
            raise RoleError(f"Role '{role}' is already fulfilled by {existing.source}")
        if existing is None:
            binding = RoleBinding(role, target, source=source)
        else:
            binding = existing.retag(target, source)
        self._roles[role] = binding
        self.log.append(f"role:{role}->{binding.source}")
        return binding

    def retag(self, role: str, target: Any, *, source: str | None = None) -> RoleBinding:
        return self.tag(role, target, source=source, replace=True)

    def untag(self, role: str) -> None:
        if self._roles.pop(role, None) is not None:
            self.log.append(f"role:{role}->none")

    def is_tagged(self, role: str) -> bool:
        return role in self._roles

    def binding(self, role: str) -> RoleBinding:
        try:
            return self._roles[role]
        except KeyError:
            raise RoleError(f"No declaration is tagged with role '{role}'") from None

    def resolve(self, role: str) -> Any:
        return self.binding(role).target

    def get(self, role: str, default: Any = None) -> Any:
        binding = self._roles.get(role)
        return default if binding is None else binding.target

    def snapshot(self) -> dict[str, str]:
        return {role: binding.source for role, binding in self._roles.items()}

    def clear(self) -> None:
        self._roles.clear()
        self.log.clear()


ROLE_REGISTRY = RoleRegistry()


__all__ = [
    "ALLOCATOR_OPERATIONS",
    "ROLE_REGISTRY",
    "RoleBinding",
    "RoleRegistry",
]
