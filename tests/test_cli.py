"""
test_cli.py — lwwcollection command line

Runs ``main()`` in-process against snapshot files in a temp directory.
"""

import json
from pathlib import Path

import pytest

from lwwcollection import Collection, canonical_bytes, sha256_hash
from lwwcollection.cli import main


def _write(path, payload):
    path.write_text(json.dumps(payload), encoding="utf-8")
    return str(path)


@pytest.fixture
def base(tmp_path):
    return _write(tmp_path / "base.json", {
        "entries": {"a": [100, "x"], "b": [100, "y"]},
        "deletedKeys": {"c": 50},
    })


@pytest.fixture
def incoming(tmp_path):
    return _write(tmp_path / "incoming.json", {
        "entries": {"a": [50, "old"], "c": [60, "back"], "d": [1, "new"]},
        "deletedKeys": {"b": 150},
    })


def test_hash(base, capsys):
    main(["hash", base])
    out = capsys.readouterr().out.strip()
    expected = Collection.from_snapshot(Path(base).read_text(encoding="utf-8")).hash
    assert out == expected


def test_hash_sha256(base, capsys):
    main(["hash", "--sha256", base])
    out = capsys.readouterr().out.strip()
    assert out == sha256_hash('{"a":[100,"x"],"b":[100,"y"]}')


def test_show(base, capsys):
    main(["show", base])
    shown = json.loads(capsys.readouterr().out)
    assert shown["entry_count"] == 2
    assert shown["deleted_count"] == 1
    assert shown["snapshot"]["deletedKeys"] == {"c": 50}


def test_merge_to_stdout(base, incoming, capsys):
    main(["merge", base, incoming])
    merged = json.loads(capsys.readouterr().out)
    assert merged == {
        "entries": {"a": [100, "x"], "c": [60, "back"], "d": [1, "new"]},
        "deletedKeys": {"b": 150},
    }


def test_merge_is_order_independent_for_distinct_timestamps(base, incoming, capsys):
    main(["merge", base, incoming])
    forward = json.loads(capsys.readouterr().out)
    main(["merge", incoming, base])
    backward = json.loads(capsys.readouterr().out)
    assert forward == backward


def test_merge_to_file(base, incoming, tmp_path, capsys):
    out_path = tmp_path / "out" / "merged.json"
    main(["merge", base, incoming, "-o", str(out_path)])
    assert "Merged snapshot written" in capsys.readouterr().out
    raw = out_path.read_bytes()
    merged = json.loads(raw.decode("utf-8"))
    assert set(merged["entries"]) == {"a", "c", "d"}
    assert raw == canonical_bytes(merged) + b"\n"


def test_malformed_snapshot_exits(tmp_path, capsys):
    bad = _write(tmp_path / "bad.json", {"entries": {}})
    with pytest.raises(SystemExit) as exc:
        main(["show", bad])
    assert exc.value.code == 1
    err = capsys.readouterr().err
    assert "LWW_E200" in err


def test_missing_file_exits(tmp_path, capsys):
    with pytest.raises(SystemExit) as exc:
        main(["hash", str(tmp_path / "nope.json")])
    assert exc.value.code == 1
    assert "Snapshot not found" in capsys.readouterr().err


def test_subcommand_required():
    with pytest.raises(SystemExit):
        main([])
