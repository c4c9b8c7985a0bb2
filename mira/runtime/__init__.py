"""
Mira runtime core.

  Values alias the caller's storage unless a parameter asks for a copy.
  Traits are satisfied by declaration, checked exactly when declared.
  Heap storage and output go through role-tagged, swappable capabilities.

| Layer                         | Purpose                                   |
<------------------------------ + ----------------------------------------- >
| **Binding environment**       | Scoped cells, aliases, dangling checks    |
| **Aliasing resolver**         | Copy-or-alias parameter binding per call  |
| **Conformance checker**       | Exact impl/trait matching, nominal typing |
| **Role registry**             | Allocator, copy, clone and print roles    |
| **Allocator registry**        | Arena and libc implementors, safe realloc |
| **Native bindings**           | Checked declarations marshaled by ctypes  |
| **Declaration analysis**      | NetworkX graph, recursive struct checks   |
| **Module documents**          | JSON persistence, hash and diff           |
| **Logbook ledger**            | Signed provenance of module checks        |
"""

from . import core as _core
from . import target as _target
from . import roles as _roles
from . import traits as _traits
from . import aliasing as _aliasing
from . import allocator as _allocator
from . import module as _module
from . import stdlib as _stdlib
from . import analysis as _analysis
from . import bitcode as _bitcode
from . import crypto as _crypto
from .cli import main, parse_args, run
from ..constants import KEY_FILE, LOGBOOK_FILE, PUB_FILE
from ..ffi import (
    NATIVE_REGISTRY,
    NativeDeclaration,
    NativeFunction,
    bind_native,
    clear_native_registry,
    get_registered_native_declarations,
    load_library,
    parse_inline_natives,
    register_native_declarations,
)

from .core import *
from .target import *
from .roles import *
from .traits import *
from .aliasing import *
from .allocator import *
from .module import *
from .stdlib import *
from .analysis import *
from .bitcode import *
from .crypto import *

__all__ = []
for _mod in (
    _core, _target, _roles, _traits, _aliasing, _allocator, _module,
    _stdlib, _analysis, _bitcode, _crypto,
):
    __all__.extend(getattr(_mod, '__all__', []))
__all__ += [
    'main', 'parse_args', 'run', 'NATIVE_REGISTRY', 'NativeDeclaration', 'NativeFunction',
    'bind_native', 'clear_native_registry', 'get_registered_native_declarations',
    'load_library', 'parse_inline_natives', 'register_native_declarations',
    'KEY_FILE', 'LOGBOOK_FILE', 'PUB_FILE',
]
__all__ = list(dict.fromkeys(__all__))
