import ctypes.util
import json
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from mira import (  # noqa: E402
    AllocatorError,
    Handle,
    NativeBindingError,
    NativeCallMismatch,
    NativeDeclaration,
    Target,
    Value,
    bind_native,
    clear_native_registry,
    get_registered_native_declarations,
    parse_inline_natives,
    register_native_declarations,
)

HAS_LIBC = ctypes.util.find_library("c") is not None


@pytest.fixture(autouse=True)
def clean_registry():
    clear_native_registry()
    yield
    clear_native_registry()


def test_declaration_kinds_are_validated_at_declaration():
    with pytest.raises(NativeBindingError, match="unknown native kind 'float'"):
        NativeDeclaration("f", ["usize", "float"])
    with pytest.raises(NativeBindingError, match="not a valid parameter kind"):
        NativeDeclaration("g", ["void"])
    with pytest.raises(NativeBindingError, match="requires a name"):
        NativeDeclaration("", [])


def test_kind_spellings_are_normalized():
    decl = NativeDeclaration("g", ["u64", "pointer", "str"], "handle")
    assert decl.param_kinds == ["usize", "ptr", "bytes"]
    assert decl.return_kind == "ptr"
    assert decl.arity == 3
    assert str(decl) == "g(usize, ptr, bytes) -> ptr"


def test_parse_inline_natives_schema():
    decls = parse_inline_natives(
        """
        # libc allocation
        malloc(usize) -> ptr @ c
        free(ptr)
        """
    )
    assert [d.name for d in decls] == ["malloc", "free"]
    assert decls[0].library == "c"
    assert decls[1].return_kind == "void"

    with pytest.raises(NativeBindingError, match="invalid inline native declaration"):
        parse_inline_natives("not a declaration")


def test_register_rejects_duplicates():
    register_native_declarations("twice(usize) -> usize")
    with pytest.raises(NativeBindingError, match="duplicate declaration"):
        register_native_declarations("twice(usize) -> usize")


def test_register_accepts_json_and_dicts():
    spec = json.dumps([{"name": "h", "params": ["usize"], "returns": "usize"}])
    register_native_declarations(spec)
    register_native_declarations({"name": "k", "param_kinds": ["bytes"]})
    registered = get_registered_native_declarations()
    assert set(registered) == {"h", "k"}
    assert registered["k"].return_kind == "void"


def test_declaration_dict_round_trip():
    decl = NativeDeclaration("open_file", ["bytes"], "ptr", symbol="open", library="c")
    assert NativeDeclaration.from_dict(decl.to_dict()) == decl


def test_host_binding_checks_arity_at_bind_time():
    decl = NativeDeclaration("add", ["usize", "usize"], "usize")
    with pytest.raises(NativeBindingError, match="does not accept 2 arguments"):
        bind_native(decl, lambda a: a)
    with pytest.raises(NativeBindingError, match="not callable"):
        bind_native(decl, 42)


def test_bind_by_name_requires_declaration():
    with pytest.raises(NativeBindingError, match="not declared"):
        bind_native("nothing")
    register_native_declarations("add(usize, usize) -> usize")
    add = bind_native("add", lambda a, b: a + b)
    assert add(Value.number(2), Value.number(3)).payload == 5
    assert add.calls == 1


def test_kind_mismatch_at_call_time_is_fatal():
    add = bind_native(NativeDeclaration("add", ["usize", "usize"], "usize"), lambda a, b: a + b)
    assert not issubclass(NativeCallMismatch, Exception)
    with pytest.raises(NativeCallMismatch, match="expects usize but got text"):
        add(Value.text("x"), Value.number(1))
    with pytest.raises(NativeCallMismatch, match="expects 2 arguments"):
        add(Value.number(1))
    with pytest.raises(NativeCallMismatch):
        add(Value.number(-1), Value.number(1))
    assert add.calls == 0


def test_usize_is_bounded_by_target_word():
    ident = bind_native(
        NativeDeclaration("ident", ["usize"], "usize"),
        lambda n: n,
        target=Target("x86", "linux"),
    )
    assert ident(Value.number((1 << 32) - 1)).payload == (1 << 32) - 1
    with pytest.raises(NativeCallMismatch, match="32-bit word"):
        ident(Value.number(1 << 32))


def test_pointer_and_bytes_marshaling():
    seen = []

    def consume(ptr, data):
        seen.append((ptr, data))
        return 0x2000

    fn = bind_native(NativeDeclaration("consume", ["ptr", "bytes"], "ptr"), consume)
    result = fn(Value.handle(Handle(0x1000)), Value.text("hé"))
    assert seen == [(0x1000, "hé".encode("utf-8"))]
    assert result.kind == "handle"
    assert result.payload.address == 0x2000

    released = Handle(0x1000)
    released.released = True
    with pytest.raises(AllocatorError, match="released handle"):
        fn(Value.handle(released), Value.text(""))


def test_host_return_value_must_match_kind():
    bad = bind_native(NativeDeclaration("bad", [], "usize"), lambda: "text")
    with pytest.raises(NativeCallMismatch, match="for usize"):
        bad()
    void = bind_native(NativeDeclaration("noop", []), lambda: None)
    assert void() is None


def test_invalid_utf8_from_native_is_fatal():
    garbled = bind_native(NativeDeclaration("garbled", [], "bytes"), lambda: b"\xff\xfe")
    with pytest.raises(NativeCallMismatch, match="not valid UTF-8"):
        garbled()
    clean = bind_native(NativeDeclaration("clean", [], "bytes"), lambda: "h\u00e9".encode("utf-8"))
    assert clean().payload == "h\u00e9"


@pytest.mark.skipif(not HAS_LIBC, reason="C library not available")
def test_libc_symbol_binding():
    strlen = bind_native(NativeDeclaration("strlen", ["bytes"], "usize"), library="c")
    assert strlen(Value.text("hello")).payload == 5


@pytest.mark.skipif(not HAS_LIBC, reason="C library not available")
def test_missing_symbol_fails_at_bind_time():
    with pytest.raises(NativeBindingError, match="not found"):
        bind_native(NativeDeclaration("mira_no_such_symbol", []), library="c")
