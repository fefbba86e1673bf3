"""
Integration tests for the flowgate command line interface.
"""

import json

import pytest
from typer.testing import CliRunner

from flowgate.cli import app

runner = CliRunner()


@pytest.fixture
def catalog_file(isolated_environment):
    path = isolated_environment / "data" / "catalog.json"
    path.write_text(
        json.dumps(
            {
                "servers": [{"name": "dummy", "url": "mock://dummy-gp"}],
                "modules": [{"id": 1, "name": "DummyModule", "server": "dummy"}],
            }
        )
    )
    return path


class TestCli:
    def test_config_show(self, isolated_environment, monkeypatch):
        monkeypatch.setenv("FLOWGATE_CALLBACK_TOKEN", "hunter2")

        result = runner.invoke(app, ["config-show"])

        assert result.exit_code == 0
        assert "STORE_PATH" in result.output
        assert "hunter2" not in result.output

    def test_check_with_empty_store(self, catalog_file):
        result = runner.invoke(app, ["check"])

        assert result.exit_code == 0
        assert "Checked" in result.output

    def test_modules_of_mock_server(self, catalog_file):
        result = runner.invoke(app, ["modules", "dummy"])

        assert result.exit_code == 0
        assert "MockModule" in result.output

    def test_modules_of_unknown_server(self, catalog_file):
        result = runner.invoke(app, ["modules", "nowhere"])

        assert result.exit_code == 1
        assert "not configured" in result.output
