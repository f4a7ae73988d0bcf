"""Tests for the command line interface"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

from typer.testing import CliRunner

runner = CliRunner()


class TestCli:
    def test_config_shows_effective_models(self, project):
        from taskmaster.cli import app

        result = runner.invoke(app, ["config", "--dir", str(project)])

        assert result.exit_code == 0
        assert "claude-3-7-sonnet-20250219" in result.output
        assert "Master Default Config Template" in result.output

    def test_models_table(self, project):
        from taskmaster.cli import app

        result = runner.invoke(app, ["models", "--dir", str(project)])

        assert result.exit_code == 0
        assert "Supported Models" in result.output

    def test_keys_table(self, project, monkeypatch):
        from taskmaster.cli import app

        monkeypatch.setenv("OPENAI_API_KEY", "sk-live")
        result = runner.invoke(app, ["keys", "--dir", str(project)])

        assert result.exit_code == 0
        assert "API Key Status" in result.output
        assert "openai" in result.output

    def test_broken_catalog_exits(self, project):
        from taskmaster.cli import app
        from taskmaster.errors import ModelCatalogError

        with patch("taskmaster.cli.ConfigManager", side_effect=ModelCatalogError("catalog missing")):
            result = runner.invoke(app, ["config", "--dir", str(project)])

        assert result.exit_code == 1
        assert "catalog missing" in result.output

    def test_generate_rejects_unknown_role(self, project):
        from taskmaster.cli import app

        result = runner.invoke(app, ["generate", "hi", "--role", "boss", "--dir", str(project)])

        assert result.exit_code == 2
        assert "unknown role" in result.output

    def test_generate_prints_text(self, project):
        from taskmaster.cli import app
        from taskmaster.provider.types import Usage
        from taskmaster.service import ServiceResult

        service_result = ServiceResult(
            main_result=SimpleNamespace(text="Hi from the model", usage=Usage(3, 4, 7)),
            telemetry_data=None,
            provider_name="anthropic",
            model_id="claude-3-7-sonnet-20250219",
            role="main",
        )

        with patch("taskmaster.service.AIService.generate_text", new=AsyncMock(return_value=service_result)) as call:
            result = runner.invoke(app, ["generate", "hi", "--dir", str(project)])

        assert result.exit_code == 0
        assert "Hi from the model" in result.output
        assert "3 in / 4 out" in result.output
        assert call.await_args.args[:3] == ("main", None, "hi")

    def test_generate_reports_errors(self, project):
        from taskmaster.cli import app
        from taskmaster.errors import ConfigurationError

        failing = AsyncMock(side_effect=ConfigurationError("API key for provider 'anthropic' is not set"))
        with patch("taskmaster.service.AIService.generate_text", new=failing):
            result = runner.invoke(app, ["generate", "hi", "--dir", str(project)])

        assert result.exit_code == 1
        assert "is not set" in result.output
