import sqlite3

import pytest

from showreco import utils


def test_retry_with_backoff_recovers(monkeypatch):
    monkeypatch.setattr(utils.time, "sleep", lambda s: None)
    attempts = {"n": 0}

    @utils.retry_with_backoff((sqlite3.OperationalError,), attempts=3)
    def flaky():
        attempts["n"] += 1
        if attempts["n"] < 3:
            raise sqlite3.OperationalError("database is locked")
        return "ok"

    assert flaky() == "ok"
    assert attempts["n"] == 3


def test_retry_with_backoff_gives_up_and_ignores_other_errors(monkeypatch):
    sleeps = []
    monkeypatch.setattr(utils.time, "sleep", sleeps.append)

    @utils.retry_with_backoff((sqlite3.OperationalError,), attempts=2)
    def locked():
        raise sqlite3.OperationalError("database is locked")

    with pytest.raises(sqlite3.OperationalError):
        locked()
    assert sleeps == [0.1]

    calls = {"n": 0}

    @utils.retry_with_backoff((sqlite3.OperationalError,), attempts=3)
    def broken():
        calls["n"] += 1
        raise KeyError("x")

    with pytest.raises(KeyError):
        broken()
    assert calls["n"] == 1
