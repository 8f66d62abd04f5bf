"""Tests for configuration and the command line."""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from tang import cli
from tang.config import BACKEND_CAPACITY, DEFAULT_ADDRESS, GRACEFUL_TIMEOUT, Settings, split_list
from tang.errors import GitError, ListenerError


class TestSplitList:
    def test_colon_separated(self):
        assert split_list("drj11:pwaller") == ["drj11", "pwaller"]

    def test_drops_empty_entries(self):
        assert split_list(":a::b:") == ["a", "b"]

    def test_empty(self):
        assert split_list("") == []


class TestSettingsFromEnv:
    """Tests for Settings.from_env()."""

    def test_defaults(self):
        settings = Settings.from_env({"TANG_ROOT": "/srv/tang"})

        assert settings.root == Path("/srv/tang")
        assert settings.address == DEFAULT_ADDRESS
        assert settings.repositories == ("scraperwiki/tang",)
        assert settings.allowed_pushers == frozenset({"drj11", "pwaller"})
        assert settings.test_mode is False
        assert settings.backend_capacity == BACKEND_CAPACITY
        assert settings.hook_timeout is None
        assert settings.graceful_timeout == GRACEFUL_TIMEOUT

    def test_overrides_from_environment(self):
        settings = Settings.from_env({
            "TANG_ROOT": "/srv/tang",
            "TANG_ADDRESS": ":9000",
            "TANG_REPOSITORIES": "a/b:c/d",
            "TANG_ALLOWED_PUSHERS": "alice",
            "GITHUB_USER": "bot",
            "GITHUB_PASSWORD": "s3cret",
            "TANG_TEST": "1",
            "TANG_QA_DOMAIN": "qa.example.com",
            "TANG_BACKEND_CAPACITY": "2",
            "TANG_HOOK_TIMEOUT": "60",
            "TANG_GRACEFUL_TIMEOUT": "2",
        })

        assert settings.address == ":9000"
        assert settings.repositories == ("a/b", "c/d")
        assert settings.allowed_pushers == frozenset({"alice"})
        assert settings.github_user == "bot"
        assert settings.test_mode is True
        assert settings.qa_domain == "qa.example.com"
        assert settings.backend_capacity == 2
        assert settings.hook_timeout == 60.0
        assert settings.graceful_timeout == 2.0

    def test_empty_test_flag_is_off(self):
        assert Settings.from_env({"TANG_TEST": ""}).test_mode is False

    def test_paths(self):
        settings = Settings(root=Path("/srv/tang"))
        assert settings.git_base_dir == Path("/srv/tang/repo")
        assert settings.logs_dir == Path("/srv/tang/logs")

    def test_with_overrides_skips_none(self):
        settings = Settings(address=":1").with_overrides(address=None, qa_domain="qa.test")
        assert settings.address == ":1"
        assert settings.qa_domain == "qa.test"


class TestParseArgs:
    """Tests for the command line."""

    def test_defaults(self):
        args = cli.parse_args([])
        assert args.address is None
        assert args.no_configure_hooks is False

    def test_flags_override_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("TANG_ADDRESS", ":9000")
        monkeypatch.setenv("TANG_ALLOWED_PUSHERS", "alice")
        args = cli.parse_args([
            "--address", ":7000",
            "--allowed-pushers", "bob:carol",
            "--root", str(tmp_path),
            "--hook-timeout", "5",
            "--graceful-timeout", "1.5",
        ])

        settings = cli.build_settings(args)

        assert settings.address == ":7000"
        assert settings.allowed_pushers == frozenset({"bob", "carol"})
        assert settings.root == tmp_path.resolve()
        assert settings.hook_timeout == 5.0
        assert settings.graceful_timeout == 1.5

    def test_environment_used_when_flag_absent(self, monkeypatch):
        monkeypatch.setenv("TANG_ADDRESS", ":9000")
        settings = cli.build_settings(cli.parse_args([]))
        assert settings.address == ":9000"

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc:
            cli.parse_args(["--version"])
        assert exc.value.code == 0
        assert "tang" in capsys.readouterr().out


@pytest.fixture
def main_env(monkeypatch, tmp_path):
    monkeypatch.setenv("TANG_ROOT", str(tmp_path))
    monkeypatch.setenv("TANG_TEST", "1")
    monkeypatch.delenv("GITHUB_USER", raising=False)
    monkeypatch.delenv("TANG_LISTEN_FD", raising=False)
    return tmp_path


class TestMain:
    """Tests for main() wiring, with serving patched out."""

    @patch("tang.cli.Supervisor")
    @patch("tang.cli.GithubClient")
    @patch("tang.cli.ListenerHandoff")
    def test_starts_server(self, mock_handoff, mock_github, mock_supervisor, main_env):
        cli.main(["--address", "127.0.0.1:0"])

        mock_handoff.return_value.acquire.assert_called_once_with("127.0.0.1:0")
        mock_github.return_value.configure_hooks.assert_called_once()
        mock_supervisor.return_value.serve.assert_called_once()
        assert (main_env / "logs").is_dir()

    @patch("tang.cli.Supervisor")
    @patch("tang.cli.GithubClient")
    @patch("tang.cli.ListenerHandoff")
    def test_skip_configure_hooks(self, mock_handoff, mock_github, mock_supervisor, main_env):
        cli.main(["--no-configure-hooks"])
        mock_github.return_value.configure_hooks.assert_not_called()

    @patch("tang.cli.Supervisor")
    @patch("tang.cli.ListenerHandoff")
    def test_listen_failure_exits(self, mock_handoff, mock_supervisor, main_env):
        mock_handoff.return_value.acquire.side_effect = ListenerError("unable to listen on :1")

        with pytest.raises(SystemExit) as exc:
            cli.main(["--no-configure-hooks"])

        assert exc.value.code == 1
        mock_supervisor.assert_not_called()

    @patch("tang.cli.Supervisor")
    @patch("tang.cli.GithubClient", MagicMock())
    @patch("tang.cli.ListenerHandoff", MagicMock())
    @patch("tang.cli.setup_credential_helper")
    def test_credential_helper_failure_is_not_fatal(self, mock_helper, mock_supervisor, main_env, monkeypatch):
        monkeypatch.setenv("GITHUB_USER", "bot")
        mock_helper.side_effect = GitError("no global config")

        cli.main([])

        mock_helper.assert_called_once()
        mock_supervisor.return_value.serve.assert_called_once()

    @patch("tang.cli.Supervisor")
    @patch("tang.cli.GithubClient", MagicMock())
    @patch("tang.cli.ListenerHandoff", MagicMock())
    @patch("tang.cli.setup_credential_helper")
    def test_no_credential_helper_without_user(self, mock_helper, mock_supervisor, main_env):
        cli.main([])
        mock_helper.assert_not_called()
