"""Tests for graph_server/server.py — CLI parsing and config layering."""

from __future__ import annotations

import pytest

from core.config import ServerConfig
from graph_server import server


class TestParseArgs:
    def test_no_flags_leaves_everything_unset(self) -> None:
        args = server.parse_args([])
        assert all(getattr(args, name) is None for name in server._OVERRIDABLE)

    def test_all_flags(self) -> None:
        args = server.parse_args(
            [
                "--host", "0.0.0.0",
                "--port", "6000",
                "--output-channels", "4",
                "--sample-rate", "44100",
                "--block-size", "256",
                "--backend", "sounddevice",
                "--device", "2",
                "--mixer-channels", "8",
                "--max-mixer-channels", "32",
                "--recv-error-policy", "exit",
                "--metrics-port", "9100",
                "--log-level", "debug",
            ]
        )
        assert args.port == 6000
        assert args.output_channels == 4
        assert args.backend == "sounddevice"
        assert args.recv_error_policy == "exit"
        assert args.log_level == "DEBUG"

    def test_invalid_backend_choice_exits(self) -> None:
        with pytest.raises(SystemExit):
            server.parse_args(["--backend", "jack"])


class TestBuildConfig:
    def test_defaults(self) -> None:
        assert server.build_config(server.parse_args([]), environ={}) == ServerConfig()

    def test_env_overrides_defaults(self) -> None:
        config = server.build_config(server.parse_args([]), environ={"GRAPH_SERVER_PORT": "5151"})
        assert config.port == 5151

    def test_flags_override_env(self) -> None:
        config = server.build_config(
            server.parse_args(["--port", "6000"]),
            environ={"GRAPH_SERVER_PORT": "5151", "GRAPH_SERVER_BACKEND": "sounddevice"},
        )
        assert config.port == 6000
        assert config.backend == "sounddevice"

    def test_merged_config_is_validated(self) -> None:
        with pytest.raises(ValueError, match="max_mixer_channels"):
            server.build_config(
                server.parse_args(["--max-mixer-channels", "1"]),
                environ={"GRAPH_SERVER_MIXER_CHANNELS": "4"},
            )


class TestMain:
    def test_invalid_configuration_exit_code(
        self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        monkeypatch.setattr(server, "load_dotenv", lambda: False)
        monkeypatch.setenv("GRAPH_SERVER_SAMPLE_RATE", "0")
        assert server.main([]) == 2
        assert "invalid configuration" in capsys.readouterr().err

    def test_unknown_env_log_level_exit_code(
        self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        monkeypatch.setattr(server, "load_dotenv", lambda: False)
        monkeypatch.setattr(server, "run", lambda config: None)
        monkeypatch.setenv("GRAPH_SERVER_LOG_LEVEL", "VERBOSE")
        assert server.main([]) == 2
        assert "log_level" in capsys.readouterr().err

    def test_runs_with_merged_config(self, monkeypatch: pytest.MonkeyPatch) -> None:
        seen: list[ServerConfig] = []
        monkeypatch.setattr(server, "load_dotenv", lambda: False)
        monkeypatch.setattr(server, "configure_logging", lambda level: None)
        monkeypatch.setattr(server, "run", seen.append)
        monkeypatch.delenv("GRAPH_SERVER_PORT", raising=False)
        assert server.main(["--port", "0", "--log-level", "warning"]) == 0
        assert seen[0].port == 0
        assert seen[0].log_level == "WARNING"

    def test_socket_failure_exit_code(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def _fail(config: ServerConfig) -> None:
            raise OSError("Address already in use")

        monkeypatch.setattr(server, "load_dotenv", lambda: False)
        monkeypatch.setattr(server, "configure_logging", lambda level: None)
        monkeypatch.setattr(server, "run", _fail)
        assert server.main(["--port", "0"]) == 1
