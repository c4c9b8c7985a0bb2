import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from mira import (  # noqa: E402
    ConformanceError,
    FunctionDecl,
    Impl,
    Interpreter,
    MethodSignature,
    Param,
    RoleRegistry,
    StructType,
    TraitDecl,
    UnboundNameError,
    Var,
    find_method,
    install_default_roles,
)


def method(name, params=(), body=None, receiver=True):
    return FunctionDecl(name, list(params), body, receiver=receiver)


def area_body(frame):
    return frame.get_field("self", "w").payload * frame.get_field("self", "h").payload


@pytest.fixture
def shape():
    return TraitDecl("Shape", [MethodSignature("area", 0), MethodSignature("scale", 1)])


@pytest.fixture
def rect():
    return StructType("Rect", [("w", "u64"), ("h", "u64")])


@pytest.fixture
def interp():
    roles = RoleRegistry()
    install_default_roles(roles)
    return Interpreter(roles=roles)


def test_exact_impl_is_accepted(shape, rect):
    impl = Impl(rect, shape, [method("area", body=area_body), method("scale", ["k"])])
    assert rect.implements(shape)
    assert rect.impl_for("Shape") is impl
    assert set(impl.table) == {"area", "scale"}


def test_missing_method_is_rejected_at_declaration(shape, rect):
    with pytest.raises(ConformanceError, match="missing: scale") as excinfo:
        Impl(rect, shape, [method("area")])
    assert excinfo.value.missing == ["scale"]
    assert not rect.implements(shape)


def test_extra_method_is_rejected(shape, rect):
    with pytest.raises(ConformanceError, match="not in trait: volume") as excinfo:
        Impl(rect, shape, [method("area"), method("scale", ["k"]), method("volume")])
    assert excinfo.value.extra == ["volume"]
    assert not rect.implements(shape)


def test_arity_and_receiver_mismatches_are_rejected(shape, rect):
    with pytest.raises(ConformanceError) as excinfo:
        Impl(rect, shape, [method("area", ["x"]), method("scale", ["k"])])
    assert excinfo.value.mismatched == ["area"]

    with pytest.raises(ConformanceError) as excinfo:
        Impl(rect, shape, [method("area", receiver=False), method("scale", ["k"])])
    assert excinfo.value.mismatched == ["area"]


def test_impl_is_declared_once_per_pair(shape, rect):
    Impl(rect, shape, [method("area"), method("scale", ["k"])])
    with pytest.raises(ConformanceError, match="already declared"):
        Impl(rect, shape, [method("area"), method("scale", ["k"])])


def test_duplicate_method_in_impl_is_rejected(shape, rect):
    with pytest.raises(ConformanceError, match="method defined twice"):
        Impl(rect, shape, [method("area"), method("area"), method("scale", ["k"])])


def test_dispatch_through_declared_impl(shape, rect, interp):
    Impl(rect, shape, [method("area", body=area_body), method("scale", ["k"])])
    interp.env.define("r", rect.instantiate(w=3, h=4))
    assert interp.dispatch(Var("r"), shape, "area").payload == 12


def test_matching_shape_without_impl_is_not_conforming(shape, rect, interp):
    rect.add_method(method("area", body=area_body))
    rect.add_method(method("scale", ["k"]))
    interp.env.define("r", rect.instantiate(w=2, h=5))

    # Untyped calls find the method dynamically.
    assert interp.call_method(Var("r"), "area").payload == 10

    with pytest.raises(ConformanceError, match="conformance must be declared"):
        interp.dispatch(Var("r"), shape, "area")

    interp.define_function(FunctionDecl("measure", [Param("s", trait=shape)]))
    with pytest.raises(ConformanceError, match="no impl declared"):
        interp.call("measure", Var("r"))


def test_trait_typed_parameter_accepts_conforming_value(shape, rect, interp):
    Impl(rect, shape, [method("area", body=area_body), method("scale", ["k"])])
    seen = []
    interp.define_function(
        FunctionDecl(
            "measure",
            [Param("s", trait=shape)],
            lambda frame: seen.append(frame.dispatch(Var("s"), shape, "area").payload),
        )
    )
    interp.env.define("r", rect.instantiate(w=2, h=2))
    interp.call("measure", Var("r"))
    assert seen == [4]


def test_override_wins_over_trait_default(interp):
    describe_default = method("describe", body=lambda frame: "a shape")
    named = TraitDecl("Named", [MethodSignature("name", 0)], [describe_default])
    assert named.required == {"name"}

    square = StructType("Square", ["side"])
    circle = StructType("Circle", ["radius"])
    Impl(
        square,
        named,
        [method("name", body=lambda frame: "square"), method("describe", body=lambda frame: "four sides")],
    )
    Impl(circle, named, [method("name", body=lambda frame: "circle")])

    interp.env.define("s", square.instantiate(side=1))
    interp.env.define("c", circle.instantiate(radius=1))
    assert interp.dispatch(Var("s"), named, "describe").payload == "four sides"
    assert interp.dispatch(Var("c"), named, "describe").payload == "a shape"


def test_default_body_must_match_its_signature():
    with pytest.raises(ConformanceError, match="default body") as excinfo:
        TraitDecl("T", [MethodSignature("m", 0)], [method("m", ["x"])])
    assert str(excinfo.value).startswith("<default body> does not implement T")
    assert excinfo.value.mismatched == ["m"]


def test_untyped_lookup_reaches_impl_methods(shape, rect):
    area = method("area", body=area_body)
    Impl(rect, shape, [area, method("scale", ["k"])])
    assert find_method(rect, "area") is area
    with pytest.raises(UnboundNameError):
        find_method(rect, "perimeter")


def test_struct_instantiation_checks_fields(rect):
    with pytest.raises(UnboundNameError):
        rect.instantiate(w=1, h=2, d=3)
    with pytest.raises(TypeError, match="missing fields: h"):
        rect.instantiate(w=1)
