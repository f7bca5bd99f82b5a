"""Tests for the maintenance command line."""

import json
import sys

import pytest

from app_explorer.__main__ import main
from app_explorer.database import Database
from app_explorer.map_store import AppMapStore
from app_explorer.value_store import ValueStore

PKG = "com.example.app"


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "explorer.db"
    with Database(path) as db:
        maps = AppMapStore(db)
        maps.record_screen(PKG, "home", ".Main", "Home", False, ["Settings"])
        maps.record_screen(PKG, "settings", ".Settings", "Settings", False, ["Wi-Fi"])
        maps.record_transition(PKG, "home", "settings", f"{PKG}:id/settings", "Settings", True)
        values = ValueStore(db)
        maps.flush_writes()
        values.set_value("abc|Button|settings|top", 0.4, PKG)
        values.flush_writes()
    return path


def run(monkeypatch, tmp_path, *argv):
    env = tmp_path / ".env"
    env.write_text("")
    monkeypatch.setattr(sys, "argv", ["app-explorer", "--env-file", str(env), *argv])
    with pytest.raises(SystemExit) as exc:
        main()
    return exc.value.code


def test_stats(monkeypatch, tmp_path, db_path, capsys):
    """Test statistics are printed for every store."""
    assert run(monkeypatch, tmp_path, "--db", str(db_path), "stats") == 0
    out = capsys.readouterr().out
    assert "1 apps, 2 screens, 1 transitions" in out
    assert "Value table: 1 entries" in out
    assert "Delivery queue: 0 pending entries" in out


def test_path(monkeypatch, tmp_path, db_path, capsys):
    """Test the best route is printed with its reliability."""
    assert run(monkeypatch, tmp_path, "--db", str(db_path), "path", PKG, "home", "settings") == 0
    assert "home -> settings (reliability 0.700)" in capsys.readouterr().out


def test_missing_path(monkeypatch, tmp_path, db_path):
    """Test an unknown route exits non-zero."""
    assert run(monkeypatch, tmp_path, "--db", str(db_path), "path", PKG, "settings", "home") == 1


def test_export(monkeypatch, tmp_path, db_path):
    """Test map JSON, GraphML and value table are written."""
    out = tmp_path / "exports"
    assert run(monkeypatch, tmp_path, "--db", str(db_path), "export", PKG, "--out", str(out)) == 0
    learned = json.loads((out / f"{PKG}.map.json").read_text())
    assert set(learned["screens"]) == {"home", "settings"}
    assert (out / f"{PKG}.graphml").exists()
    values = json.loads((out / f"{PKG}.values.json").read_text())
    assert values["q_values"] == {"abc|Button|settings|top": pytest.approx(0.4)}


def test_clear(monkeypatch, tmp_path, db_path):
    """Test clearing removes the map and a second clear fails."""
    assert run(monkeypatch, tmp_path, "--db", str(db_path), "clear", PKG) == 0
    assert run(monkeypatch, tmp_path, "--db", str(db_path), "clear", PKG) == 1
