"""Declaration graphs and whole-module diagnostics."""
from __future__ import annotations

from pathlib import Path

try:
    import networkx as nx
except ModuleNotFoundError:  # pragma: no cover
    nx = None

try:
    import matplotlib.pyplot as plt
except ModuleNotFoundError:  # pragma: no cover
    plt = None

try:
    import pydot
except ModuleNotFoundError:  # pragma: no cover
    pydot = None

from ..constants import KIND_COLORS, RESERVED_TYPE_NAMES

REFERENCE_SIGILS = ("&", "*")


def _require_networkx():
    if nx is None:
        raise RuntimeError("Declaration analysis requires networkx to be installed")


def _field_target(type_name):
    """Split a field type into (by_value, base name)."""

    if type_name is None:
        return True, None
    base = type_name.strip()
    by_value = True
    while base.startswith(REFERENCE_SIGILS):
        by_value = False
        base = base[1:].lstrip()
    if base.startswith("mut "):
        base = base[4:].lstrip()
    return by_value, base


def build_declaration_graph(module):
    """Directed graph of a module's declarations and how they refer to each other."""

    _require_networkx()
    graph = nx.DiGraph(name=module.name)

    for name in module.structs:
        graph.add_node(name, kind="struct")
    for name in module.traits:
        graph.add_node(name, kind="trait")
    for name in module.externals:
        graph.add_node(name, kind="native", bound=name in module.natives)
    for name in module.functions:
        graph.add_node(name, kind="function")
    for name in module.statics:
        graph.add_node(name, kind="static")

    for struct in module.structs.values():
        for field, type_name in struct.fields:
            by_value, base = _field_target(type_name)
            if base in module.structs:
                graph.add_edge(
                    struct.name,
                    base,
                    kind="field" if by_value else "ref",
                    label=field,
                )
        for method in struct.methods:
            qualified = f"{struct.name}.{method}"
            graph.add_node(qualified, kind="function")
            graph.add_edge(struct.name, qualified, kind="method", label=method)

    for impl in module.impls:
        graph.add_edge(impl.struct.name, impl.trait.name, kind="impl", label="impl")

    return graph


def _rotate(cycle):
    start = cycle.index(min(cycle))
    return cycle[start:] + cycle[:start]


def find_recursive_structs(module):
    """By-value containment cycles; such structs have no finite layout."""

    graph = build_declaration_graph(module)
    containment = nx.DiGraph()
    containment.add_nodes_from(n for n, d in graph.nodes(data=True) if d["kind"] == "struct")
    containment.add_edges_from(
        (u, v) for u, v, d in graph.edges(data=True) if d["kind"] == "field"
    )
    return sorted(_rotate(list(c)) for c in nx.simple_cycles(containment))


def unresolved_field_types(module):
    missing = []
    for struct in module.structs.values():
        for field, type_name in struct.fields:
            _, base = _field_target(type_name)
            if base is None or base in RESERVED_TYPE_NAMES or base in module.structs or base in module.imports:
                continue
            missing.append((struct.name, field, type_name))
    return missing


def check_module(module):
    """Return human-readable diagnostics; an empty list means the module is sound."""

    errors = []
    for cycle in find_recursive_structs(module):
        path = " -> ".join(cycle + [cycle[0]])
        errors.append(f"Recursive struct detected: {path}")
    for struct_name, field, type_name in unresolved_field_types(module):
        errors.append(f"Unresolved type '{type_name}' for field {struct_name}.{field}")
    return errors


def print_module(module):
    print(f"module {module.name}")
    for struct in module.structs.values():
        fields = ", ".join(f"{n}: {t}" if t else n for n, t in struct.fields)
        print(f"  struct {struct.name} {{ {fields} }}")
        for impl in struct.impls.values():
            print(f"    impl {impl.trait.name} ({', '.join(sorted(impl.table))})")
    for trait in module.traits.values():
        sigs = ", ".join(str(s) for s in trait.signatures.values())
        print(f"  trait {trait.name} [{sigs}]")
    for decl in module.externals.values():
        state = "bound" if decl.name in module.natives else "lazy"
        print(f"  extern {decl} [{state}]")
    for name, value in module.statics.items():
        print(f"  static {name} = {value.payload!r}")
    for role, target in module.roles.items():
        print(f"  #[{role}] {getattr(target, 'name', target)}")


def visualize_module(module, output_path=None):  # pragma: no cover
    """Draw the declaration graph with matplotlib."""

    if nx is None or plt is None:
        raise RuntimeError("Visualization requires networkx and matplotlib to be installed")

    graph = build_declaration_graph(module)
    pos = nx.spring_layout(graph, seed=7)
    colors = [KIND_COLORS.get(d["kind"], "#B0BEC5") for _, d in graph.nodes(data=True)]

    fig, ax = plt.subplots(figsize=(8, 6))
    nx.draw_networkx_nodes(graph, pos, node_color=colors, node_size=1200, ax=ax)
    nx.draw_networkx_labels(graph, pos, font_size=9, ax=ax)
    styles = {"field": "solid", "ref": "dashed", "impl": "dotted", "method": "dotted"}
    for kind, style in styles.items():
        edges = [(u, v) for u, v, d in graph.edges(data=True) if d["kind"] == kind]
        if edges:
            nx.draw_networkx_edges(graph, pos, edgelist=edges, style=style, arrows=True, ax=ax)
    ax.set_title(f"Mira module {module.name}")
    ax.axis("off")

    if output_path:
        fig.savefig(output_path, bbox_inches="tight")
        print(f"  ✓ Module graph written → {output_path}")
    else:
        plt.show()
    plt.close(fig)


def export_graphviz(module, output_path):  # pragma: no cover
    """Export the declaration graph as a Graphviz SVG."""

    if pydot is None:
        raise RuntimeError("Graphviz export requires the optional pydot dependency")

    graph = build_declaration_graph(module)
    dot = pydot.Dot(
        f"mira_{module.name}",
        graph_type="digraph",
        rankdir="LR",
        fontname="Helvetica",
    )
    for name, data in graph.nodes(data=True):
        dot.add_node(
            pydot.Node(
                name,
                label=f"{name}\\n[{data['kind']}]",
                shape="box" if data["kind"] in ("struct", "trait") else "ellipse",
                style="filled",
                fillcolor=KIND_COLORS.get(data["kind"], "#B0BEC5"),
                fontname="Helvetica",
            )
        )
    for u, v, data in graph.edges(data=True):
        dot.add_edge(
            pydot.Edge(
                u,
                v,
                label=data.get("label", ""),
                style="solid" if data["kind"] == "field" else "dashed",
                color="#34495e",
            )
        )

    output_path = Path(output_path)
    if output_path.parent and not output_path.parent.exists():
        output_path.parent.mkdir(parents=True, exist_ok=True)

    dot.write_svg(str(output_path))
    print(f"  ✓ Graphviz visualization exported → {output_path}")


__all__ = [
    "build_declaration_graph",
    "check_module",
    "export_graphviz",
    "find_recursive_structs",
    "print_module",
    "unresolved_field_types",
    "visualize_module",
]
