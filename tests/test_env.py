"""
Tests for configuration loading: defaults, environment, dotenv file, overrides
and the legacy port file.
"""

import pytest
from pydantic import ValidationError

from env import DEFAULT_PORT, Env, load_env, read_port_file
from server import build_env, parse_args

ENV_NAMES = list(Env.types_map())


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    # keep a stray .env or myport.info in the working directory out of the tests
    monkeypatch.chdir(tmp_path)


class TestLoadEnv:
    def test_defaults(self) -> None:
        env = load_env(Env)

        assert env.TCP_SERVER_HOST == "127.0.0.1"
        assert env.TCP_SERVER_PORT == DEFAULT_PORT
        assert env.TCP_SERVER_POOL_SIZE == 15
        assert env.TCP_SERVER_LOG_LEVEL == "info"

    def test_environment_overrides_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TCP_SERVER_PORT", "9001")
        monkeypatch.setenv("TCP_SERVER_POOL_SIZE", "4")
        monkeypatch.setenv("TCP_SERVER_LOG_LEVEL", "DEBUG")

        env = load_env(Env)

        assert env.TCP_SERVER_PORT == 9001
        assert env.TCP_SERVER_POOL_SIZE == 4
        assert env.TCP_SERVER_LOG_LEVEL == "debug"

    def test_env_file_overrides_environment(self, monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
        monkeypatch.setenv("TCP_SERVER_PORT", "9001")
        env_file = tmp_path / "server.env"
        env_file.write_text("TCP_SERVER_PORT=9002\nTCP_SERVER_DRAIN_TIMEOUT=1.5\n")

        env = load_env(Env, env_file=str(env_file))

        assert env.TCP_SERVER_PORT == 9002
        assert env.TCP_SERVER_DRAIN_TIMEOUT == 1.5

    def test_override_wins(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TCP_SERVER_PORT", "9001")
        monkeypatch.setenv("TCP_SERVER_POOL_SIZE", "4")

        env = load_env(Env, override=Env(TCP_SERVER_PORT=9100))

        assert env.TCP_SERVER_PORT == 9100
        assert env.TCP_SERVER_POOL_SIZE == 4

    def test_invalid_pool_size_rejected(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TCP_SERVER_POOL_SIZE", "0")

        with pytest.raises(ValidationError):
            load_env(Env)


class TestPortFile:
    def test_missing_file_uses_default(self, tmp_path) -> None:
        assert read_port_file(str(tmp_path / "missing.info"), default=1234) == 1234

    def test_reads_port(self, tmp_path) -> None:
        path = tmp_path / "myport.info"
        path.write_text("1357\n")

        assert read_port_file(str(path)) == 1357

    def test_invalid_port_uses_default(self, tmp_path) -> None:
        path = tmp_path / "myport.info"
        path.write_text("not a port")

        assert read_port_file(str(path), default=4321) == 4321


class TestBuildEnv:
    def test_cli_flags_win(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TCP_SERVER_PORT", "9001")

        env = build_env(parse_args(["--port", "9200", "--pool-size", "3", "--log-level", "warning"]))

        assert env.TCP_SERVER_PORT == 9200
        assert env.TCP_SERVER_POOL_SIZE == 3
        assert env.TCP_SERVER_LOG_LEVEL == "warning"

    def test_port_file_used_when_port_not_configured(self) -> None:
        with open("myport.info", "w", encoding="utf-8") as f:
            f.write("1357")

        env = build_env(parse_args([]))

        assert env.TCP_SERVER_PORT == 1357

    def test_environment_port_beats_port_file(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TCP_SERVER_PORT", "9001")
        with open("myport.info", "w", encoding="utf-8") as f:
            f.write("1357")

        env = build_env(parse_args([]))

        assert env.TCP_SERVER_PORT == 9001
