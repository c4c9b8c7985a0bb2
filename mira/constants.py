"""Shared constant values for the Mira runtime."""

VALUE_KINDS = ["number", "text", "struct", "handle", "ref"]

PARAM_MODES = ["alias", "copy"]

NATIVE_PARAM_KINDS = ["usize", "ptr", "bytes"]
NATIVE_RETURN_KINDS = NATIVE_PARAM_KINDS + ["void"]

# Spellings accepted in inline native schemas and module documents.
NATIVE_KIND_ALIASES = {
    "usize": "usize",
    "u64": "usize",
    "word": "usize",
    "ptr": "ptr",
    "pointer": "ptr",
    "handle": "ptr",
    "*void": "ptr",
    "bytes": "bytes",
    "str": "bytes",
    "void": "void",
    "": "void",
}

ROLE_ALLOCATOR = "allocator"
ROLE_COPY = "copy"
ROLE_CLONE = "clone"
ROLE_PRINT = "print"

RESERVED_ROLES = [ROLE_ALLOCATOR, ROLE_COPY, ROLE_CLONE, ROLE_PRINT]

RESERVED_TYPE_NAMES = [
    "str", "bool", "char", "void", "i8", "i16", "i32", "i64", "isize", "u8",
    "u16", "u32", "u64", "usize", "f16", "f32", "f64", "!",
]

DEFAULT_TARGET = "x86_64-linux-gnu"

ARENA_DEFAULT_CAPACITY = 1 << 16
BUFFER_INITIAL_CAPACITY = 8

MODULE_DOC_VERSION = "0.3"
LOGBOOK_FILE = "mira.logbook.jsonl"
KEY_FILE = "mira_private_key.pem"
PUB_FILE = "mira_public_key.pem"

KIND_COLORS = {
    "struct": "#8BC34A",
    "trait": "#FFEB3B",
    "native": "#FF7043",
    "function": "#9575CD",
    "static": "#B0BEC5",
}

__all__ = [
    "VALUE_KINDS",
    "PARAM_MODES",
    "NATIVE_PARAM_KINDS",
    "NATIVE_RETURN_KINDS",
    "NATIVE_KIND_ALIASES",
    "ROLE_ALLOCATOR",
    "ROLE_COPY",
    "ROLE_CLONE",
    "ROLE_PRINT",
    "RESERVED_ROLES",
    "RESERVED_TYPE_NAMES",
    "DEFAULT_TARGET",
    "ARENA_DEFAULT_CAPACITY",
    "BUFFER_INITIAL_CAPACITY",
    "MODULE_DOC_VERSION",
    "LOGBOOK_FILE",
    "KEY_FILE",
    "PUB_FILE",
    "KIND_COLORS",
]
