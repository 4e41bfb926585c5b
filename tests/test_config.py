"""Tests for config loading, session wiring and the CLI."""

import json
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import pytest

from pii_annotator import (
    Document,
    LocalStoreClient,
    PatternStoreClient,
    SqliteFeedbackStore,
    create_session,
    load_config,
    load_from_yaml,
)
from pii_annotator import cli, server
from pii_annotator.config import create_detector
from pii_annotator.ml_layer import CompositeDetector, PresidioDetector


# ── Config ───────────────────────────────────────────────────────────

def test_defaults():
    cfg = load_config({})
    assert cfg["store_backend"] == "memory"
    assert cfg["confidence_threshold"] == 0.7
    assert cfg["auto_refine_threshold"] == 2
    assert cfg["use_presidio"] is False
    assert cfg["log_level"] == "INFO"


def test_nested_section_and_url_implies_http():
    cfg = load_config({"pii_annotator": {"store_url": "http://127.0.0.1:1", "timeout": 3}})
    assert cfg["store_backend"] == "http"
    assert cfg["timeout"] == 3.0


def test_unknown_backend_rejected():
    with pytest.raises(ValueError):
        load_config({"store": {"backend": "redis"}})


def test_load_from_yaml(tmp_path):
    path = tmp_path / "annotator.yaml"
    path.write_text(
        "pii_annotator:\n"
        "  confidence_threshold: 0.6\n"
        "  fuzzy_threshold: 0.9\n"
        "  store:\n"
        "    backend: sqlite\n"
        f"    path: {tmp_path / 'p.db'}\n"
    )
    cfg = load_from_yaml(path)
    assert cfg["store_backend"] == "sqlite"
    assert cfg["confidence_threshold"] == 0.6
    assert cfg["fuzzy_threshold"] == 0.9


# ── Wiring ───────────────────────────────────────────────────────────

def test_create_session_with_sqlite(tmp_path):
    cfg = {"store": {"backend": "sqlite", "path": str(tmp_path / "p.db")}, "auto_refine_threshold": 3}
    session = create_session(cfg, [Document("d", "d", "text")])
    assert isinstance(session.store, LocalStoreClient)
    assert isinstance(session.store.store, SqliteFeedbackStore)
    assert session.store.store.auto_refine_threshold == 3
    assert isinstance(session.detector, CompositeDetector)
    session.store.store.close()


def test_http_backend_uses_remote_detector():
    cfg = load_config({"store_url": "http://127.0.0.1:18792"})
    session = create_session(cfg, [])
    assert isinstance(session.store, PatternStoreClient)
    assert session.detector == session.store.test_pattern


def test_presidio_detector_added_when_enabled():
    detector = create_detector(load_config({"use_presidio": True}))
    assert any(isinstance(d, PresidioDetector) for d in detector.detectors)


def test_http_backend_requires_url():
    with pytest.raises(ValueError):
        create_session({"store": {"backend": "http"}}, [])


# ── CLI ──────────────────────────────────────────────────────────────

def _run(monkeypatch, capsys, *argv, stdin=None):
    monkeypatch.setattr(sys, "argv", ["pii-annotator", *argv])
    if stdin is not None:
        import io
        monkeypatch.setattr(sys, "stdin", io.StringIO(stdin))
    cli.main()
    return capsys.readouterr().out


def test_cli_learn(monkeypatch, capsys):
    out = json.loads(_run(monkeypatch, capsys, "learn", "123-45-6789"))
    assert out[0]["format"] == "SSN"


def test_cli_save_feedback_highlight(monkeypatch, capsys, tmp_path):
    db = str(tmp_path / "p.db")
    patterns = tmp_path / "patterns.json"
    patterns.write_text(json.dumps([{"id": "custom-1", "label": "Phone", "examples": ["555-1234"]}]))

    saved = json.loads(_run(monkeypatch, capsys, "--db", db, "save", "--patterns", str(patterns)))
    pid = saved[0]["id"]
    assert saved[0]["regex"]

    for _ in range(2):
        _run(monkeypatch, capsys, "--db", db, "feedback", "--pattern-id", pid,
             "--text", "555-1234", "--negative")

    refined = json.loads(_run(monkeypatch, capsys, "--db", db, "refined"))
    assert refined[0]["excludedExamples"] == ["555-1234"]

    patterns.write_text(json.dumps(saved))
    out = json.loads(_run(monkeypatch, capsys, "--db", db, "match", "--patterns", str(patterns),
                          stdin="Call 555-1234 or 555-9999"))
    assert [m["text"] for m in out] == ["555-9999"]

    html = _run(monkeypatch, capsys, "--db", db, "highlight", "--patterns", str(patterns),
                stdin="<p>555-9999</p>")
    assert html.startswith("&lt;p&gt;<span ")


def test_cli_feedback_rejects_bad_id(monkeypatch, capsys, tmp_path):
    with pytest.raises(SystemExit) as exc:
        _run(monkeypatch, capsys, "--db", str(tmp_path / "p.db"), "feedback",
             "--pattern-id", "pattern-1", "--text", "x", "--positive")
    assert exc.value.code == 2


def test_cli_learn_without_examples(monkeypatch, capsys):
    with pytest.raises(SystemExit) as exc:
        _run(monkeypatch, capsys, "learn", stdin="[]")
    assert exc.value.code == 2
    assert "at least one example" in capsys.readouterr().err


def test_cli_serve_passes_refine_threshold(monkeypatch, capsys, tmp_path):
    seen = {}
    monkeypatch.setattr(server, "serve", lambda **kwargs: seen.update(kwargs))
    db = str(tmp_path / "p.db")
    _run(monkeypatch, capsys, "--db", db, "--auto-refine-threshold", "4", "serve", "--port", "0")
    assert seen == {"port": 0, "db_path": db, "auto_refine_threshold": 4}
