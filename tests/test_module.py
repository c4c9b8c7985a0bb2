import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from mira import (  # noqa: E402
    ROLE_COPY,
    ROLE_PRINT,
    ConformanceError,
    CyclicImportError,
    FunctionDecl,
    ImmutableBindingError,
    Interpreter,
    MethodSignature,
    Module,
    NativeBindingError,
    RedefinitionError,
    RoleError,
    RoleRegistry,
    UnboundNameError,
    Var,
    install_default_roles,
    println,
)


@pytest.fixture
def roles():
    registry = RoleRegistry()
    install_default_roles(registry)
    return registry


def test_top_level_names_are_unique():
    module = Module("geometry")
    module.declare_struct("Point", ["x", "y"])
    with pytest.raises(RedefinitionError, match="'Point' is already defined in geometry"):
        module.declare_struct("Point", ["x"])
    with pytest.raises(RedefinitionError):
        module.declare_function(FunctionDecl("Point"))
    with pytest.raises(RedefinitionError):
        module.declare_static("Point", 1)


def test_reserved_type_names_cannot_be_structs():
    module = Module()
    with pytest.raises(RedefinitionError, match="reserved"):
        module.declare_struct("u8", [])


def test_impl_declaration_runs_conformance_check():
    module = Module()
    module.declare_struct("Point", ["x"])
    module.declare_trait("Show", [MethodSignature("show", 0)])
    with pytest.raises(UnboundNameError):
        module.declare_impl("Point", "Missing", [])
    with pytest.raises(ConformanceError):
        module.declare_impl("Point", "Show", [])
    assert module.impls == []
    impl = module.declare_impl("Point", "Show", [MethodSignature("show", 0)])
    assert module.impls == [impl]


def test_exports_and_resolution():
    module = Module()
    point = module.declare_struct("Point", ["x"])
    module.export("Point", "P")
    assert module.resolve("P") is point
    assert module.resolve("Point") is point
    with pytest.raises(UnboundNameError):
        module.export("Nope")
    with pytest.raises(RedefinitionError):
        module.export("Point", "P")
    with pytest.raises(UnboundNameError):
        module.resolve("Q")


def test_externals_are_bound_and_callable(roles):
    module = Module()
    module.declare_external({"name": "twice", "params": ["usize"], "returns": "usize"}, lambda n: n * 2)
    interp = Interpreter(module, roles=roles)
    assert interp.call("twice", 21).payload == 42


def test_bad_external_never_claims_its_name():
    module = Module()
    with pytest.raises(NativeBindingError):
        module.declare_external({"name": "bad", "params": ["float"]})
    assert not module.is_defined("bad")


def test_lazy_externals_bind_once():
    module = Module()
    module.declare_external({"name": "ident", "params": ["usize"], "returns": "usize"}, lazy=True)
    assert "ident" not in module.natives
    bound = module.bind_external("ident", lambda n: n)
    assert module.natives["ident"] is bound
    with pytest.raises(NativeBindingError, match="already bound"):
        module.bind_external("ident", lambda n: n)
    with pytest.raises(UnboundNameError):
        module.bind_external("other", lambda n: n)


def test_statics_are_immutable_globals(roles):
    module = Module()
    module.declare_static("LIMIT", 10)
    interp = Interpreter(module, roles=roles)
    assert interp.env.lookup("LIMIT").payload == 10
    with pytest.raises(ImmutableBindingError):
        interp.env.assign("LIMIT", 11)


def test_role_tags_are_validated():
    module = Module()
    module.declare_external({"name": "emit", "params": ["bytes"]}, lambda data: None)
    with pytest.raises(RoleError, match="Unknown role tag"):
        module.tag_role("logger", "emit")
    with pytest.raises(UnboundNameError):
        module.tag_role(ROLE_PRINT, "missing")
    module.tag_role(ROLE_PRINT, "emit")
    with pytest.raises(RoleError, match="already tagged"):
        module.tag_role(ROLE_PRINT, "emit")


def test_installing_roles_swaps_the_print_entry_point(roles):
    captured = []
    module = Module("console")
    module.declare_external({"name": "emit", "params": ["bytes"]}, lambda data: captured.append(data))
    module.tag_role(ROLE_PRINT, "emit")

    installed = module.install_roles(roles)

    assert installed == {ROLE_PRINT: "console::emit"}
    assert roles.binding(ROLE_PRINT).source == "console::emit"
    println("hi {}", 3, roles=roles)
    assert captured == [b"hi 3\n"]


def test_function_roles_need_an_interpreter(roles):
    module = Module()

    def dup(frame):
        return frame["v"].duplicate()

    module.declare_function(FunctionDecl("dup", ["v"], dup))
    module.declare_function(FunctionDecl("bump", ["copy a"], lambda frame: frame.__setitem__("a", 1)))
    module.tag_role(ROLE_COPY, "dup")
    with pytest.raises(RoleError, match="interpreter is required"):
        module.install_roles(roles)

    interp = Interpreter(module, roles=roles)
    module.install_roles(roles, interp)
    interp.env.define("a", 0, mutable=True)
    interp.call("bump", Var("a"))

    assert interp.env.lookup("a").payload == 0
    assert "call:dup" in interp.log


def test_import_from_goes_through_exports(roles):
    geometry = Module("geometry")
    point = geometry.declare_struct("Point", [("x", "u64")])
    geometry.declare_struct("Hidden", [])
    geometry.declare_function(FunctionDecl("origin", [], lambda frame: 0))
    geometry.export("Point")
    geometry.export("origin", "zero")

    app = Module("app")
    assert app.import_from(geometry, "Point", "P") is point
    app.import_from(geometry, "zero")
    assert app.resolve("P") is point
    assert app.dependencies() == [geometry]

    with pytest.raises(UnboundNameError, match="geometry exports"):
        app.import_from(geometry, "Hidden")
    with pytest.raises(RedefinitionError):
        app.import_from(geometry, "Point", "P")

    app.declare_trait("Show", [MethodSignature("show", 0)])
    app.declare_impl("P", "Show", [MethodSignature("show", 0)])
    assert point.implements(app.traits["Show"])

    interp = Interpreter(app, roles=roles)
    assert interp.call("zero").payload == 0


def test_cyclic_imports_are_rejected():
    a = Module("a")
    b = Module("b")
    a.declare_static("ONE", 1)
    b.declare_static("TWO", 2)
    a.export("ONE")
    b.export("TWO")

    b.import_from(a, "ONE")
    with pytest.raises(CyclicImportError, match="a -> b -> a") as excinfo:
        a.import_from(b, "TWO")
    assert excinfo.value.chain == ["a", "b", "a"]
    assert "TWO" not in a.imports

    with pytest.raises(CyclicImportError):
        a.import_from(a, "ONE", "again")
