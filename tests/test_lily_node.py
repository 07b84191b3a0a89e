"""Tests for the controller entry point."""
import argparse
import asyncio
import sys

import pytest

import db
import lily_node


def test_default_source_id_fits_16_bits():
    assert 0 <= lily_node.default_source_id() <= 0xFFFF


def test_requires_simulate(monkeypatch):
    monkeypatch.setattr(sys, "argv", ["lily-node", "--no-broadcast"])
    with pytest.raises(SystemExit):
        lily_node.main()


def test_rejects_out_of_range_level(monkeypatch):
    monkeypatch.setattr(sys, "argv", ["lily-node", "--simulate", "--level", "16"])
    with pytest.raises(SystemExit):
        lily_node.main()


def test_run_persists_schedule(tmp_path, capsys):
    path = tmp_path / "node.db"
    args = argparse.Namespace(
        id=3, label="bench", level=5, unit_seconds=1.0, production_seconds=2.0,
        no_broadcast=True, port=0, broadcast_address="127.0.0.1",
        db=path, debug=False, ticks=2)

    asyncio.run(lily_node._run(args))

    state = db.StateStore("bench", db_path=path).load()
    assert state is not None
    assert state.cooldown_level == 5
    assert state.last_level == 5
    assert state.ready_at is not None
    assert "Lily bench (id 3)" in capsys.readouterr().out
