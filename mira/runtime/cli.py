"""Command-line interface for the Mira runtime."""
from __future__ import annotations

import argparse
import json
import sys

from ..errors import MiraError, TargetParsingError
from .analysis import check_module, export_graphviz, print_module, visualize_module
from .bitcode import (
    diff_documents,
    hash_module_file,
    load_module_document,
    record_check,
    show_logbook,
)
from .crypto import verify_signature
from .target import Target


def _runtime_callable(name, fallback):
    runtime_mod = sys.modules.get("mira.runtime")
    if runtime_mod and hasattr(runtime_mod, name):
        return getattr(runtime_mod, name)
    return fallback


def _load(filename):
    with open(filename, "r", encoding="utf-8") as f:
        return load_module_document(json.load(f))


def build_parser():
    argp = argparse.ArgumentParser(prog="mira", description="Mira Runtime Core")

    argp.add_argument("--check", metavar="FILE", help="Load a module document and report diagnostics")
    argp.add_argument(
        "--record",
        action="store_true",
        help="With --check, append a signed entry to the logbook",
    )
    argp.add_argument("--hash", metavar="FILE", help="Compute the hash of a module document")
    argp.add_argument(
        "--diff",
        nargs=2,
        metavar=("A", "B"),
        help="Compare two module documents",
    )
    argp.add_argument("--logbook", action="store_true", help="Show the Mira provenance logbook")
    argp.add_argument("--verify", metavar="HASH", help="Verify the signature for a logbook hash")
    argp.add_argument("--signature", metavar="HEX", help="Signature to check with --verify")
    argp.add_argument("--visualize", metavar="FILE", help="Draw a module's declaration graph")
    argp.add_argument(
        "--viz",
        nargs=2,
        metavar=("FILE", "OUTPUT"),
        help="Export a module's declaration graph to an SVG file",
    )
    argp.add_argument("--target", metavar="TRIPLE", help="Parse an arch-os[-abi] target triple")

    return argp


def parse_args(args):
    return build_parser().parse_args(args)


def main(args):
    params = parse_args(args)

    if params.target:
        try:
            target = Target.parse(params.target)
        except TargetParsingError as exc:
            print(f"✗ {exc}")
            return 1
        print(f"✓ {target}  (llvm: {target.to_llvm()}, {target.word_bits}-bit {target.endianness}-endian)")
        return 0
    if params.diff:
        differences = _runtime_callable("diff_documents", diff_documents)(*params.diff)
        return 1 if differences else 0
    if params.hash:
        _runtime_callable("hash_module_file", hash_module_file)(params.hash)
        return 0
    if params.logbook:
        _runtime_callable("show_logbook", show_logbook)()
        return 0
    if params.verify:
        signature = params.signature or input("Signature hex: ").strip()
        ok = _runtime_callable("verify_signature", verify_signature)(params.verify, signature)
        print("✓ Signature valid" if ok else "✗ Invalid signature")
        return 0 if ok else 1
    if params.visualize:
        _runtime_callable("visualize_module", visualize_module)(_load(params.visualize))
        return 0
    if params.viz:
        _runtime_callable("export_graphviz", export_graphviz)(_load(params.viz[0]), params.viz[1])
        return 0
    if params.check:
        try:
            module = _load(params.check)
        except (MiraError, ValueError, KeyError) as exc:
            print(f"✗ {params.check} rejected: {exc}")
            return 1
        print_module(module)
        diagnostics = _runtime_callable("check_module", check_module)(module)
        print("\nDeclaration analysis:")
        if not diagnostics:
            print("  ✓ All declaration checks passed")
        for diagnostic in diagnostics:
            print("  ✗", diagnostic)
        if params.record:
            _runtime_callable("record_check", record_check)(params.check, diagnostics)
        return 1 if diagnostics else 0

    build_parser().print_help()
    return 0


def run():  # pragma: no cover
    sys.exit(main(sys.argv[1:]))


__all__ = [
    "build_parser",
    "main",
    "parse_args",
    "run",
]


if __name__ == "__main__":  # pragma: no cover
    run()
