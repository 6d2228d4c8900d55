"""
Tests for the server launcher.
"""

import entry_point
from parish_ledger.main import app


class TestEntryPoint:

    def test_runs_the_app_with_cli_overrides(self, monkeypatch):
        calls = []
        monkeypatch.setattr(entry_point.uvicorn, "run", lambda *args, **kwargs: calls.append((args, kwargs)))

        entry_point.main(["--host", "0.0.0.0", "--port", "9001"])

        assert calls == [((app,), {"host": "0.0.0.0", "port": 9001, "log_config": None})]

    def test_defaults_come_from_settings(self, monkeypatch):
        calls = []
        monkeypatch.setattr(entry_point.uvicorn, "run", lambda *args, **kwargs: calls.append(kwargs))

        entry_point.main([])

        settings = entry_point.get_settings()
        assert calls[0]["host"] == settings.host
        assert calls[0]["port"] == settings.port
