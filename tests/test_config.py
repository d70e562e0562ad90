"""Config tests -- environment loading, precedence, startup validation."""
from __future__ import annotations

from pathlib import Path

import pytest

from klaudkod.config import DEFAULT_COMMAND_ENV, ServerConfig, load_config, validate_startup

_ENV_VARS = (
    "LLM_BASE_URL", "LLM_API_KEY", "LLM_MODEL", "SERVER_HOST", "SERVER_PORT",
    "TOOLS_ENABLED", "PERMISSION_MODE", "COMMAND_TIMEOUT", "WORKING_DIR", "LOG__LEVEL",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # Keep a stray .env in the cwd out of these tests.
    monkeypatch.chdir(tmp_path)


class TestLoading:

    def test_defaults(self) -> None:
        cfg = load_config()
        assert cfg.llm_model == "gpt-4"
        assert cfg.server_port == 8080
        assert cfg.tools_enabled is True
        assert cfg.permission_mode == "auto"
        assert cfg.command_timeout == 120_000
        assert cfg.max_iterations == 50
        assert cfg.outbound_queue_size == 256
        assert (cfg.ping_interval, cfg.pong_wait, cfg.write_wait) == (54.0, 60.0, 10.0)
        assert cfg.command_env == DEFAULT_COMMAND_ENV

    def test_environment_variables(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LLM_MODEL", "local-coder")
        monkeypatch.setenv("LLM_BASE_URL", "http://localhost:11434/v1")
        monkeypatch.setenv("SERVER_PORT", "9001")
        monkeypatch.setenv("TOOLS_ENABLED", "false")
        monkeypatch.setenv("LOG__LEVEL", "DEBUG")
        cfg = load_config()
        assert cfg.llm_model == "local-coder"
        assert cfg.llm_base_url == "http://localhost:11434/v1"
        assert cfg.server_port == 9001
        assert cfg.tools_enabled is False
        assert cfg.log.level == "DEBUG"

    def test_env_file(self, tmp_path: Path) -> None:
        env_file = tmp_path / "server.env"
        env_file.write_text("LLM_MODEL=from-file\nSERVER_PORT=7000\n", encoding="utf-8")
        cfg = load_config(str(env_file))
        assert cfg.llm_model == "from-file"
        assert cfg.server_port == 7000

    def test_environment_beats_env_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        env_file = tmp_path / "server.env"
        env_file.write_text("LLM_MODEL=from-file\n", encoding="utf-8")
        monkeypatch.setenv("LLM_MODEL", "from-env")
        assert load_config(str(env_file)).llm_model == "from-env"

    def test_overrides_beat_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SERVER_PORT", "9001")
        assert load_config(server_port=9999).server_port == 9999

    def test_invalid_permission_mode_rejected(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PERMISSION_MODE", "yolo")
        with pytest.raises(ValueError):
            load_config()

    def test_workspace_defaults_to_cwd(self, tmp_path: Path) -> None:
        assert ServerConfig(_env_file=None).workspace == tmp_path.resolve()

    def test_workspace_resolved(self, tmp_path: Path) -> None:
        (tmp_path / "proj").mkdir()
        cfg = ServerConfig(_env_file=None, working_dir=str(tmp_path / "proj" / ".." / "proj"))
        assert cfg.workspace == (tmp_path / "proj").resolve()


class TestValidateStartup:

    def test_valid(self, tmp_path: Path) -> None:
        validate_startup(ServerConfig(_env_file=None, working_dir=str(tmp_path), llm_api_key="k"))

    def test_missing_working_dir(self, tmp_path: Path) -> None:
        cfg = ServerConfig(_env_file=None, working_dir=str(tmp_path / "missing"))
        with pytest.raises(ValueError, match="does not exist"):
            validate_startup(cfg)

    def test_working_dir_is_file(self, tmp_path: Path) -> None:
        f = tmp_path / "file.txt"
        f.write_text("x", encoding="utf-8")
        with pytest.raises(ValueError, match="is not a directory"):
            validate_startup(ServerConfig(_env_file=None, working_dir=str(f)))

    def test_collects_all_errors(self, tmp_path: Path) -> None:
        cfg = ServerConfig(
            _env_file=None,
            working_dir=str(tmp_path),
            llm_model="",
            command_timeout=0,
            max_iterations=-1,
            ping_interval=70,
        )
        with pytest.raises(ValueError) as exc_info:
            validate_startup(cfg)
        message = str(exc_info.value)
        assert message.startswith("klaudkod configuration errors:")
        for fragment in ("llm_model is empty", "command_timeout", "max_iterations", "ping_interval"):
            assert fragment in message

    def test_bad_log_level(self, tmp_path: Path) -> None:
        cfg = ServerConfig(_env_file=None, working_dir=str(tmp_path))
        cfg.log.level = "LOUD"
        with pytest.raises(ValueError, match="log.level"):
            validate_startup(cfg)
