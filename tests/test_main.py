"""Tests for the command-line entry point."""

import logging

import pytest

import main as replay_main


class TestCliParser:
    def test_repeated_hosts(self):
        args = replay_main.build_cli_parser().parse_args(
            ["--host", "http://a", "--host", "http://b", "--lag", "3", "--load", "0.1"]
        )
        assert args.hosts == ["http://a", "http://b"]
        assert args.lag == 3
        assert args.load == 0.1

    def test_unset_options_are_none(self):
        args = replay_main.build_cli_parser().parse_args([])
        assert args.hosts is None
        assert args.maxrate is None
        assert args.limit is None
        assert args.insecure is False

    def test_unparseable_number_exits(self):
        with pytest.raises(SystemExit) as exc:
            replay_main.build_cli_parser().parse_args(["--maxrate", "fast"])
        assert exc.value.code == 2


class TestMain:
    def test_invalid_config_exits_before_running(self, monkeypatch):
        called = []

        async def fake_run(config):
            called.append(config)

        monkeypatch.setattr(replay_main, "run", fake_run)
        with pytest.raises(SystemExit) as exc:
            replay_main.main(["--lag", "-1"])
        assert exc.value.code == 2
        assert called == []

    def test_missing_yaml_is_config_error(self, monkeypatch, tmp_path):
        monkeypatch.setattr(replay_main, "run", lambda config: None)
        with pytest.raises(SystemExit) as exc:
            replay_main.main(["--config", str(tmp_path / "missing.yaml")])
        assert exc.value.code == 2

    def test_runs_with_merged_config(self, monkeypatch, tmp_path):
        seen = {}

        async def fake_run(config):
            seen["config"] = config
            return {}

        yaml_file = tmp_path / "replay.yaml"
        yaml_file.write_text("maxrate: 50\nkey: from-yaml\n")
        monkeypatch.setattr(replay_main, "run", fake_run)
        monkeypatch.setattr(replay_main, "setup_logging", lambda level: None)

        code = replay_main.main([
            "--config", str(yaml_file), "--key", "from-cli", "--host", "http://canary",
        ])

        assert code == 0
        config = seen["config"]
        assert config.maxrate == 50
        assert config.key == "from-cli"
        assert config.hosts == ("http://canary",)

    def test_yaml_load_logged_after_logging_setup(self, monkeypatch, tmp_path):
        events = []

        async def fake_run(config):
            return {}

        yaml_file = tmp_path / "replay.yaml"
        yaml_file.write_text("lag: 2\n")
        monkeypatch.setattr(replay_main, "run", fake_run)
        monkeypatch.setattr(replay_main, "setup_logging", lambda level: events.append("setup"))
        monkeypatch.setattr(replay_main.logger, "info",
                            lambda msg, *args: events.append(msg % args))

        replay_main.main(["--config", str(yaml_file)])

        assert events == ["setup", f"Loaded YAML config from {yaml_file}"]

    def test_setup_logging_quiets_httpx(self):
        replay_main.setup_logging("DEBUG")
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("httpcore").level == logging.WARNING
