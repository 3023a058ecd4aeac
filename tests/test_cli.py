"""Tests for the fabengine command line."""

from unittest.mock import MagicMock, patch

import httpx
from click.testing import CliRunner

from fabengine.__main__ import cli
from fabengine.engine.secret import SecretProvisioner


class TestSecretCommands:
    """Tests for `fabengine secret`."""

    def test_show_without_secret(self, tmp_path):
        result = CliRunner().invoke(cli, ["secret", "show", "--data-dir", str(tmp_path)])
        assert result.exit_code == 0, result.output
        assert "No valid secret" in result.output

    def test_show_masks_secret(self, tmp_path):
        secret = SecretProvisioner(tmp_path / "config" / "auth_secret").provision()

        result = CliRunner().invoke(cli, ["secret", "show", "--data-dir", str(tmp_path)])

        assert result.exit_code == 0, result.output
        assert secret not in result.output
        assert secret[:5] in result.output

    def test_reset_deletes_secret(self, tmp_path):
        path = tmp_path / "config" / "auth_secret"
        SecretProvisioner(path).provision()

        result = CliRunner().invoke(
            cli, ["secret", "reset", "--data-dir", str(tmp_path), "--yes"]
        )

        assert result.exit_code == 0, result.output
        assert not path.exists()


class TestInfoCommand:
    """Tests for `fabengine info`."""

    def test_prints_version_table(self):
        response = MagicMock(status_code=200)
        response.json.return_value = {
            "status": "success",
            "data": {
                "info": {
                    "firmware": {"build": "100.26", "version": "0.99", "config": "sb"},
                    "version": {"number": "1.2.3", "hash": "", "type": "release", "debug": False},
                }
            },
        }

        with patch("httpx.get", return_value=response) as get:
            result = CliRunner().invoke(cli, ["info", "--port", "9876"])

        assert result.exit_code == 0, result.output
        assert get.call_args.args[0] == "http://127.0.0.1:9876/info"
        assert "1.2.3" in result.output
        assert "100.26" in result.output

    def test_engine_not_running(self):
        with patch("httpx.get", side_effect=httpx.ConnectError("refused")):
            result = CliRunner().invoke(cli, ["info"])

        assert result.exit_code == 1
        assert "Cannot connect" in result.output


class TestStartCommand:
    def test_boot_failure_exits_nonzero(self, tmp_path):
        data_dir = tmp_path / "data"
        data_dir.write_text("not a directory")

        result = CliRunner().invoke(cli, ["start", "--data-dir", str(data_dir)])

        assert result.exit_code == 1
        assert "create_data_directories" in result.output
