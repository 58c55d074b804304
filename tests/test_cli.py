"""
Tests for the command line interface (src/cli.py).
"""

import pytest

import cli


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Run from an empty directory so no stray .env or ESCROW_* setting leaks in."""
    monkeypatch.chdir(tmp_path)
    # setenv first so monkeypatch also undoes the CLI's own writes to os.environ
    for name in ("ESCROW_CONFIG_FILE", "ESCROW_PLATFORM_FEE_BPS", "ESCROW_OWNER",
                 "ESCROW_API_KEYS", "ESCROW_REQUIRE_AUTH"):
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)


class TestParser:
    """Tests for argument parsing."""

    def test_serve_options(self):
        args = cli.build_parser().parse_args(["serve", "--port", "8080", "--production", "--threads", "8"])
        assert args.command == "serve"
        assert args.port == 8080
        assert args.production is True
        assert args.threads == 8

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["--version"])
        assert exc_info.value.code == 0
        assert cli.__version__ in capsys.readouterr().out

    def test_no_command_prints_help(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            cli.main([])
        assert exc_info.value.code == 1
        assert "serve" in capsys.readouterr().out


class TestCommands:
    """Tests for check and info."""

    def test_info_shows_yaml_config(self, tmp_path, capsys):
        path = tmp_path / "escrow.yaml"
        path.write_text("platform_fee_bps: 250\n")

        with pytest.raises(SystemExit) as exc_info:
            cli.main(["info", "--config", str(path)])

        assert exc_info.value.code == 0
        assert "platform_fee_bps: 250" in capsys.readouterr().out

    def test_check_warns_without_arbitrators(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["check"])

        out = capsys.readouterr().out
        assert exc_info.value.code == 0
        assert "Configuration: OK" in out
        assert "disputes will fail" in out

    def test_check_fails_on_bad_config(self, monkeypatch, capsys):
        monkeypatch.setenv("ESCROW_PLATFORM_FEE_BPS", "9000")

        with pytest.raises(SystemExit) as exc_info:
            cli.main(["check"])

        assert exc_info.value.code == 1
        assert "Configuration: FAIL" in capsys.readouterr().out

    def test_check_with_roster(self, tmp_path, capsys):
        path = tmp_path / "escrow.yaml"
        path.write_text("arbitrators:\n  - address: '0xaaaa00000000000000000000000000000000000a'\n")

        with pytest.raises(SystemExit):
            cli.main(["check", "--config", str(path)])

        assert "Arbitrators (1 enrolled): OK" in capsys.readouterr().out

    @pytest.mark.parametrize("content", [
        "arbitrators:\n  - address: '0xaaaa00000000000000000000000000000000000a'\n    rank: 3\n",
        "arbitrators:\n  - address: '0xaaaa00000000000000000000000000000000000a'\n    reputation: high\n",
        "platform_fee_bps: [250\n",
        "dispute_fee: lots\n",
    ])
    def test_check_reports_bad_config_file(self, tmp_path, capsys, content):
        path = tmp_path / "escrow.yaml"
        path.write_text(content)

        with pytest.raises(SystemExit) as exc_info:
            cli.main(["check", "--config", str(path)])

        assert exc_info.value.code == 1
        assert "Configuration: FAIL" in capsys.readouterr().out

    def test_check_warns_without_api_keys(self, capsys):
        with pytest.raises(SystemExit):
            cli.main(["check"])
        assert "API keys: WARN" in capsys.readouterr().out

    def test_check_counts_api_keys(self, monkeypatch, capsys):
        monkeypatch.setenv("ESCROW_API_KEYS", "0x00000000000000000000000000000000000000a1=owner-key")

        with pytest.raises(SystemExit):
            cli.main(["check"])

        assert "API keys (1 configured): OK" in capsys.readouterr().out
