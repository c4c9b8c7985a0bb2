"""Compilation targets described as ``arch-os[-abi]`` triples."""
from __future__ import annotations

from dataclasses import dataclass
import platform
import sys

from ..constants import DEFAULT_TARGET
from ..errors import TargetParsingError

ARCHES = {
    # name: (word bits, endianness, llvm cpu)
    "x86_64": (64, "little", "x86-64"),
    "x86": (32, "little", "x86"),
}

OSES = {
    "freestanding": "unknown",
    "other": "unknown",
    "linux": "pc-linux",
}

ABIS = ["none", "gnu"]

_MACHINE_ARCHES = {
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "i386": "x86",
    "i686": "x86",
    "x86": "x86",
}


@dataclass(frozen=True)
class Target:
    arch: str
    os: str
    abi: str = "none"

    def __post_init__(self):
        if self.arch not in ARCHES:
            raise TargetParsingError("Invalid Arch")
        if self.os not in OSES:
            raise TargetParsingError("Invalid Operating System")
        if self.abi not in ABIS:
            raise TargetParsingError("Invalid ABI")

    @classmethod
    def parse(cls, text: str) -> "Target":
        parts = (text or "").strip().split("-")
        if not parts or not parts[0]:
            raise TargetParsingError("No arch specified. Format: arch-os-abi or arch-os")
        if len(parts) < 2 or not parts[1]:
            raise TargetParsingError("No os specified. Format: arch-os-abi or arch-os")
        if len(parts) > 3:
            raise TargetParsingError("Too many arguments. Format: arch-os-abi or arch-os")
        abi = parts[2] if len(parts) == 3 else "none"
        return cls(parts[0], parts[1], abi)

    @classmethod
    def default(cls) -> "Target":
        return cls.parse(DEFAULT_TARGET)

    @classmethod
    def host(cls) -> "Target":
        """Best-effort description of the running interpreter's machine."""

        arch = _MACHINE_ARCHES.get(platform.machine().lower())
        if arch is None:
            arch = "x86_64" if sys.maxsize > 2**32 else "x86"
        if sys.platform.startswith("linux"):
            return cls(arch, "linux", "gnu")
        return cls(arch, "other")

    @property
    def word_bits(self) -> int:
        return ARCHES[self.arch][0]

    @property
    def word_max(self) -> int:
        return (1 << self.word_bits) - 1

    @property
    def endianness(self) -> str:
        return ARCHES[self.arch][1]

    @property
    def llvm_cpu(self) -> str:
        return ARCHES[self.arch][2]

    def to_llvm(self) -> str:
        return f"{self.arch}-{OSES[self.os]}-{self.abi}"

    def __str__(self) -> str:
        if self.abi == "none":
            return f"{self.arch}-{self.os}"
        return f"{self.arch}-{self.os}-{self.abi}"


__all__ = ["ABIS", "ARCHES", "OSES", "Target"]
