"""Mira module documents: JSON persistence, hashing and the signed logbook."""

from __future__ import annotations

from datetime import datetime, timezone
import hashlib
import json
import sys

from ..constants import LOGBOOK_FILE, MODULE_DOC_VERSION
from ..ffi import NativeDeclaration
from .analysis import check_module
from .module import Module
from .traits import MethodSignature, _signature_of

from . import crypto as _crypto

VOLATILE_KEYS = ("timestamp",)


def _runtime_attr(name, fallback):
    return getattr(sys.modules.get("mira.runtime"), name, fallback)


def _signature_dict(sig, **extra):
    data = {"name": sig.name, "arity": sig.arity, "receiver": sig.receiver}
    data.update(extra)
    return data


def _signature(data):
    return MethodSignature(data["name"], int(data["arity"]), bool(data.get("receiver", True)))


def _role_name(module, target):
    if isinstance(target, str):
        return target
    name = getattr(target, "name", None)
    if name and module.is_defined(name):
        return name
    return None


def module_to_dict(module):
    """Describe a module's declaration surface as plain JSON data."""

    statics = []
    for name, value in module.statics.items():
        if value.kind not in ("number", "text"):
            raise ValueError(f"Static '{name}' of kind {value.kind} cannot be serialized")
        statics.append({"name": name, "kind": value.kind, "value": value.payload})

    roles = {}
    for role, target in module.roles.items():
        name = _role_name(module, target)
        if name is not None:
            roles[role] = name

    return {
        "name": module.name,
        "structs": [
            {
                "name": struct.name,
                "fields": [{"name": f, "type": t} for f, t in struct.fields],
                "methods": [_signature_dict(_signature_of(m)) for m in struct.methods.values()],
            }
            for struct in module.structs.values()
        ],
        "traits": [
            {
                "name": trait.name,
                "methods": [
                    _signature_dict(sig, default=sig.name in trait.defaults)
                    for sig in trait.signatures.values()
                ],
            }
            for trait in module.traits.values()
        ],
        "impls": [
            {
                "struct": impl.struct.name,
                "trait": impl.trait.name,
                "methods": [_signature_dict(_signature_of(m)) for m in impl.table.values()],
            }
            for impl in module.impls
        ],
        "natives": [decl.to_dict() for decl in module.externals.values()],
        "statics": statics,
        "exports": dict(module.exports),
        "roles": roles,
    }


def build_module_document(module):
    """Create an in-memory module document, diagnostics included."""

    return {
        "mira_version": MODULE_DOC_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "module": module_to_dict(module),
        "diagnostics": check_module(module),
    }


def load_module_document(doc):
    """Rebuild a :class:`Module`, re-running every declaration-time check.

    Natives are declared lazily; bind them with ``Module.bind_external``.
    """

    if not isinstance(doc, dict) or "module" not in doc:
        raise ValueError("Mira module document missing 'module' section")
    data = doc["module"]
    module = Module(data.get("name", "main"))

    for entry in data.get("structs", []):
        module.declare_struct(
            entry["name"], [(f["name"], f.get("type")) for f in entry.get("fields", [])]
        )
    for entry in data.get("traits", []):
        required = [_signature(m) for m in entry.get("methods", []) if not m.get("default")]
        defaults = [_signature(m) for m in entry.get("methods", []) if m.get("default")]
        module.declare_trait(entry["name"], required, defaults)
    for entry in data.get("structs", []):
        if entry.get("methods"):
            module.declare_methods(entry["name"], [_signature(m) for m in entry["methods"]])
    for entry in data.get("impls", []):
        module.declare_impl(
            entry["struct"], entry["trait"], [_signature(m) for m in entry.get("methods", [])]
        )
    for entry in data.get("natives", []):
        module.declare_external(NativeDeclaration.from_dict(entry), lazy=True)
    for entry in data.get("statics", []):
        module.declare_static(entry["name"], entry["value"])
    for as_name, name in data.get("exports", {}).items():
        module.export(name, as_name)
    for role, name in data.get("roles", {}).items():
        module.tag_role(role, name)
    return module


def write_module_document(doc, filename):
    with open(filename, "w", encoding="utf-8") as f:
        json.dump(doc, f, indent=2)
    print(f"  ✓ Module document exported → {filename}")
    return doc


def export_module(module, filename="module.mira.json"):
    return write_module_document(build_module_document(module), filename)


def load_module_file(filename):
    """Read a module document and verify it still loads cleanly."""

    with open(filename, "r", encoding="utf-8") as f:
        doc = json.load(f)
    load_module_document(doc)
    return doc


def canonicalize_document(doc):
    """Sort keys recursively and drop volatile fields such as the timestamp."""

    def sort_dict(d):
        if isinstance(d, dict):
            return {k: sort_dict(v) for k, v in sorted(d.items()) if k not in VOLATILE_KEYS}
        if isinstance(d, list):
            return [sort_dict(x) for x in d]
        return d

    return sort_dict(doc)


def hash_module_document(doc):
    canon = canonicalize_document(doc)
    data = json.dumps(canon, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def hash_module_file(filename):
    h = hash_module_document(load_module_file(filename))
    print(f"SHA256({filename}) = {h}")
    return h


def _names(doc, section):
    return {entry["name"] for entry in doc["module"].get(section, [])}


def diff_documents(file_a, file_b):
    """Compare two module documents; returns the list of differences found."""

    a = canonicalize_document(load_module_file(file_a))
    b = canonicalize_document(load_module_file(file_b))
    ha, hb = hash_module_document(a), hash_module_document(b)
    if ha == hb:
        print(f"✓ Modules are identical ({ha})")
        return []

    print(f"✗ Modules differ\n  {file_a}: {ha}\n  {file_b}: {hb}")
    differences = []
    for section in ("structs", "traits", "natives", "statics"):
        only_a = sorted(_names(a, section) - _names(b, section))
        only_b = sorted(_names(b, section) - _names(a, section))
        for name in only_a:
            differences.append(f"- {section[:-1]} {name}")
        for name in only_b:
            differences.append(f"+ {section[:-1]} {name}")

    impls_a = {(i["struct"], i["trait"]) for i in a["module"].get("impls", [])}
    impls_b = {(i["struct"], i["trait"]) for i in b["module"].get("impls", [])}
    for struct, trait in sorted(impls_a - impls_b):
        differences.append(f"- impl {trait} for {struct}")
    for struct, trait in sorted(impls_b - impls_a):
        differences.append(f"+ impl {trait} for {struct}")

    if a["module"].get("roles") != b["module"].get("roles"):
        differences.append("~ role tags differ")
    if a.get("diagnostics") != b.get("diagnostics"):
        differences.append("~ diagnostics differ")

    for line in differences:
        print(f"  • {line}")
    return differences


def record_check(filename, diagnostics):
    """Append a signed entry for a checked module document to the logbook."""

    sha = hash_module_file(filename)
    signer = _runtime_attr("sign_hash", _crypto.sign_hash)
    entry = {
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "filename": str(filename),
        "hash": sha,
        "signature": signer(sha),
        "ok": not diagnostics,
        "diagnostics": len(diagnostics),
        "first_diagnostic": diagnostics[0] if diagnostics else None,
    }

    logbook_path = _runtime_attr("LOGBOOK_FILE", LOGBOOK_FILE)
    with open(logbook_path, "a", encoding="utf-8") as f:
        f.write(json.dumps(entry) + "\n")

    print(f"  📜 Recorded and signed check → {logbook_path}")
    return entry


def show_logbook(limit=10):
    logbook_path = _runtime_attr("LOGBOOK_FILE", LOGBOOK_FILE)
    try:
        with open(logbook_path, "r", encoding="utf-8") as f:
            lines = f.readlines()
    except FileNotFoundError:
        print("No logbook yet.")
        return []

    entries = [json.loads(line) for line in lines[-limit:]]
    print(f"\nMira Logbook, last {len(entries)} entries:")
    for e in reversed(entries):
        status = "ok" if e["ok"] else f"{e['diagnostics']} issue(s)"
        print(f"• {e['timestamp']}  {e['filename']}  [{status}]  {e['hash'][:12]}…")
        if e.get("first_diagnostic"):
            print(f"    first: {e['first_diagnostic']}")
    return entries


__all__ = [
    "build_module_document",
    "canonicalize_document",
    "diff_documents",
    "export_module",
    "hash_module_document",
    "hash_module_file",
    "load_module_document",
    "load_module_file",
    "module_to_dict",
    "record_check",
    "show_logbook",
    "write_module_document",
]
