import copy
import json
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

pytest.importorskip("networkx")

from mira import (  # noqa: E402
    ROLE_PRINT,
    ConformanceError,
    MethodSignature,
    Module,
    NativeBindingError,
    build_module_document,
    export_module,
    hash_module_document,
    hash_module_file,
    diff_documents,
    load_module_document,
    module_to_dict,
    record_check,
    show_logbook,
    verify_signature,
)
from mira import runtime  # noqa: E402
from mira.runtime import crypto  # noqa: E402


def sample_module(name="geo"):
    module = Module(name)
    module.declare_struct("Point", [("x", "u64"), ("y", "u64")])
    module.declare_trait("Shape", [MethodSignature("area", 0)], [MethodSignature("describe", 0)])
    module.declare_impl("Point", "Shape", [MethodSignature("area", 0)])
    module.declare_methods("Point", [MethodSignature("norm", 0)])
    module.declare_external({"name": "emit", "params": ["bytes"]}, lazy=True)
    module.declare_static("LIMIT", 10)
    module.export("Point", "P")
    module.tag_role(ROLE_PRINT, "emit")
    return module


def test_document_round_trip_preserves_declarations():
    doc = build_module_document(sample_module())
    assert doc["diagnostics"] == []

    loaded = load_module_document(json.loads(json.dumps(doc)))

    assert module_to_dict(loaded) == doc["module"]
    assert loaded.traits["Shape"].required == {"area"}
    assert loaded.structs["Point"].implements("Shape")
    assert loaded.externals["emit"].param_kinds == ["bytes"]
    assert loaded.natives == {}


def test_defective_impl_cannot_be_loaded():
    doc = build_module_document(sample_module())
    broken = copy.deepcopy(doc)
    broken["module"]["impls"][0]["methods"].append({"name": "extra", "arity": 0})
    with pytest.raises(ConformanceError, match="not in trait: extra"):
        load_module_document(broken)


def test_defective_native_cannot_be_loaded():
    doc = build_module_document(sample_module())
    doc["module"]["natives"][0]["param_kinds"] = ["float"]
    with pytest.raises(NativeBindingError):
        load_module_document(doc)


def test_documents_without_module_section_are_rejected():
    with pytest.raises(ValueError, match="missing 'module'"):
        load_module_document({"mira_version": "0.3"})


def test_hash_ignores_timestamp_but_not_content():
    doc = build_module_document(sample_module())
    later = copy.deepcopy(doc)
    later["timestamp"] = "2000-01-01T00:00:00Z"
    assert hash_module_document(doc) == hash_module_document(later)

    other = build_module_document(sample_module("other"))
    assert hash_module_document(doc) != hash_module_document(other)


def test_hash_file_and_diff(tmp_path, capsys):
    a = tmp_path / "a.mira.json"
    b = tmp_path / "b.mira.json"
    export_module(sample_module(), a)
    export_module(sample_module(), b)

    digest = hash_module_file(a)
    assert f"SHA256({a}) = {digest}" in capsys.readouterr().out

    assert diff_documents(a, b) == []
    assert "Modules are identical" in capsys.readouterr().out

    changed = sample_module()
    changed.declare_struct("Extra", [])
    export_module(changed, b)
    assert diff_documents(a, b) == ["+ struct Extra"]


def test_record_check_appends_signed_entry(tmp_path, monkeypatch, capsys):
    path = tmp_path / "mod.mira.json"
    export_module(sample_module(), path)
    logbook = tmp_path / "logbook.jsonl"
    monkeypatch.setattr(runtime, "LOGBOOK_FILE", str(logbook))
    monkeypatch.setattr(runtime, "sign_hash", lambda sha: "sig-" + sha[:8])

    entry = record_check(path, [])

    assert entry["ok"] is True
    assert entry["signature"] == "sig-" + entry["hash"][:8]
    assert len(logbook.read_text().splitlines()) == 1

    entries = show_logbook()
    assert entries == [entry]
    assert "[ok]" in capsys.readouterr().out


def test_show_logbook_without_file(tmp_path, monkeypatch, capsys):
    monkeypatch.setattr(runtime, "LOGBOOK_FILE", str(tmp_path / "none.jsonl"))
    assert show_logbook() == []
    assert "No logbook yet." in capsys.readouterr().out


def test_signatures_verify_against_generated_keys(tmp_path):
    pytest.importorskip("cryptography")
    key_file = str(tmp_path / "key.pem")
    pub_file = str(tmp_path / "pub.pem")
    digest = "ab" * 32

    signature = crypto.sign_hash(digest, key_file, pub_file)

    assert verify_signature(digest, signature, pub_file)
    assert not verify_signature("cd" * 32, signature, pub_file)
    assert not verify_signature(digest, "zz", pub_file)
