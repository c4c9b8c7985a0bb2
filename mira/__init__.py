"""Mira: aliasing, trait conformance, allocator roles and native bindings."""

from . import runtime as _runtime
from . import constants as _constants
from . import errors as _errors
from . import ffi as _ffi
from .runtime import *  # noqa: F401,F403
from .constants import *  # noqa: F401,F403
from .errors import *  # noqa: F401,F403
from .ffi import *  # noqa: F401,F403

__all__ = []
__all__ += getattr(_runtime, "__all__", [])
__all__ += getattr(_constants, "__all__", [])
__all__ += getattr(_errors, "__all__", [])
__all__ += getattr(_ffi, "__all__", [])
__all__ = list(dict.fromkeys(__all__))
