"""Tests for CLI."""

import json
import time
from pathlib import Path

import httpx
import pytest

from haven import cli
from haven.cli import create_parser, run_cli
from haven.config import build_connectivity_probe, build_store, load_config
from haven.storage import PersistentStore


@pytest.fixture(autouse=True)
def haven_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point every command at a fresh data directory."""
    for name in (
        "HAVEN_DB_PATH",
        "HAVEN_LOG_DIR",
        "HAVEN_PREFIX",
        "HAVEN_ENCRYPTION_KEY",
        "HAVEN_BACKEND",
        "HAVEN_CONNECTIVITY_URL",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HAVEN_DATA_DIR", str(tmp_path / "haven"))
    return tmp_path / "haven"


@pytest.fixture
def store() -> PersistentStore:
    return build_store(load_config())


def test_no_command_prints_help(capsys):
    assert run_cli([]) == 0
    assert "usage: haven" in capsys.readouterr().out


def test_parser_requires_user_id():
    with pytest.raises(SystemExit):
        create_parser().parse_args(["info"])


def test_info_without_data(capsys):
    assert run_cli(["info", "u1"]) == 0
    assert "No data stored for u1." in capsys.readouterr().out


def test_info_with_data(store: PersistentStore, capsys):
    store.store("u1", {"mood": "good"})

    assert run_cli(["info", "u1"]) == 0
    output = capsys.readouterr().out
    assert "User: u1" in output
    assert "Version: 1.0" in output


def test_export_to_stdout(store: PersistentStore, capsys):
    store.store("u1", {"mood": "good", "email": "a@b.c"})

    assert run_cli(["export", "u1"]) == 0
    envelope = json.loads(capsys.readouterr().out)
    assert envelope["userId"] == "u1"
    assert envelope["data"] == {"mood": "good", "email": "a@b.c"}


def test_export_missing_user(capsys):
    assert run_cli(["export", "u1"]) == 1
    assert "Error:" in capsys.readouterr().err


def test_export_import_via_file(store: PersistentStore, tmp_path: Path, capsys):
    store.store("u1", {"mood": "good", "private_notes": "n"})
    target = tmp_path / "u1.json"

    assert run_cli(["export", "u1", "-o", str(target)]) == 0
    assert target.exists()
    assert run_cli(["import", "u2", str(target)]) == 0

    assert "Imported" in capsys.readouterr().out
    assert store.retrieve("u2")["private_notes"] == "n"


def test_import_missing_file(tmp_path: Path, capsys):
    assert run_cli(["import", "u1", str(tmp_path / "nope.json")]) == 1
    assert "File not found" in capsys.readouterr().err


def test_import_invalid_file(tmp_path: Path, capsys):
    bad = tmp_path / "bad.json"
    bad.write_text('{"data": {}}')

    assert run_cli(["import", "u1", str(bad)]) == 1
    assert "Error:" in capsys.readouterr().err


def test_delete(store: PersistentStore, capsys):
    store.store("u1", {"mood": "good"})

    assert run_cli(["delete", "u1"]) == 0
    assert "Deleted 2 key(s) for u1" in capsys.readouterr().out
    assert store.retrieve("u1") is None


def test_clear_requires_confirmation(store: PersistentStore, capsys):
    store.store("u1", {"mood": "good"})

    assert run_cli(["clear"]) == 1
    assert store.retrieve("u1") is not None


def test_clear(store: PersistentStore, capsys):
    store.store("u1", {"mood": "good"})
    store.store("u2", {"mood": "low"})

    assert run_cli(["clear", "--yes"]) == 0
    assert "Cleared 4 key(s)" in capsys.readouterr().out
    assert store.retrieve("u1") is None


def test_session_without_record(capsys):
    assert run_cli(["session", "u1"]) == 0
    assert "No resumable session for u1." in capsys.readouterr().out


def test_session_resumable(store: PersistentStore, capsys):
    now = time.time()
    store.store("u1", {
        "pending_recommendations": [{"id": "r1"}],
        "session_info": {
            "session_id": "session_1_abc",
            "start_time": now,
            "last_activity": now,
            "activity_count": 4,
            "settings": {"idle_timeout": 600.0},
        },
    })

    assert run_cli(["session", "u1"]) == 0
    output = capsys.readouterr().out
    assert "Session: session_1_abc" in output
    assert "Activity count: 4" in output
    assert "Pending recommendations: 1" in output


def test_session_expired(store: PersistentStore, capsys):
    stale = time.time() - 3600
    store.store("u1", {
        "session_info": {
            "session_id": "session_1_abc",
            "start_time": stale,
            "last_activity": stale,
            "settings": {"idle_timeout": 60.0},
        },
    })

    assert run_cli(["session", "u1"]) == 0
    assert "No resumable session for u1." in capsys.readouterr().out


def test_session_checks_connectivity(store: PersistentStore, monkeypatch: pytest.MonkeyPatch, capsys):
    monkeypatch.setenv("HAVEN_CONNECTIVITY_URL", "https://example.com/health")
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(503)

    def offline_probe(config, events):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return build_connectivity_probe(config, events, client=client)

    monkeypatch.setattr(cli, "build_connectivity_probe", offline_probe)
    now = time.time()
    store.store("u1", {
        "session_info": {"session_id": "session_1_abc", "start_time": now, "last_activity": now},
    })

    assert run_cli(["session", "u1"]) == 0
    assert "Connectivity: offline" in capsys.readouterr().out
    assert [r.method for r in requests] == ["HEAD"]
