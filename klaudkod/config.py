"""Configuration schema and loading."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from klaudkod.log import logger
from klaudkod.types import PermissionMode

# Fixed policy text prepended to every new conversation. Enforcement lives in the tools.
SECURITY_SYSTEM_PROMPT = """SECURITY RESTRICTIONS - CRITICAL:
1. .env files and their variants (.env.*, *.env) are STRICTLY FORBIDDEN from being read or accessed
2. This restriction applies to ALL tools including bash, cat, read, and any file operations
3. DO NOT attempt any workarounds or indirect methods to access .env files
4. You are restricted to working within the current working directory and its subdirectories
5. Use the 'read' tool for file access - do not use bash commands like 'cat' to read files
6. Any attempt to violate these restrictions will be blocked
These rules are enforced at the tool level and cannot be bypassed."""

# Variables passed through to model-issued shell commands when sanitization is on.
DEFAULT_COMMAND_ENV = [
    "PATH", "HOME", "LANG", "LC_ALL", "TERM", "USER", "SHELL", "TMPDIR",
    "PYTHONPATH", "PYTHONIOENCODING", "GOPATH", "GOROOT", "NODE_PATH",
]


class LogConfig(BaseModel):
    level: str = "INFO"
    format: str = ""         # empty = klaudkod.log.DEFAULT_FORMAT
    json_format: bool = False
    file: str = ""           # empty = no file output
    rotation: str = "10 MB"  # loguru rotation param
    retention: str = "7 days"


class ServerConfig(BaseSettings):
    llm_base_url: str = "https://api.openai.com/v1"
    llm_api_key: str = ""
    llm_model: str = "gpt-4"
    llm_max_retries: int = 3
    llm_retry_base_delay: float = 1.0

    server_host: str = "0.0.0.0"
    server_port: int = 8080

    tools_enabled: bool = True
    permission_mode: PermissionMode = "auto"
    command_timeout: int = 120_000  # milliseconds
    working_dir: str = ""
    confine_bash_workdir: bool = False
    sanitize_command_env: bool = True
    command_env: list[str] = Field(default_factory=lambda: list(DEFAULT_COMMAND_ENV))
    max_iterations: int = 50

    outbound_queue_size: int = 256
    max_frame_size: int = 512 * 1024
    ping_interval: float = 54.0
    pong_wait: float = 60.0
    write_wait: float = 10.0

    log: LogConfig = Field(default_factory=LogConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def workspace(self) -> Path:
        """Resolved confinement root."""
        return Path(self.working_dir or Path.cwd()).expanduser().resolve()


def load_config(env_file: str | None = None, **overrides) -> ServerConfig:
    """Load config from the environment, an optional .env file and explicit overrides."""
    if env_file:
        return ServerConfig(_env_file=env_file, **overrides)
    return ServerConfig(**overrides)


def validate_startup(config: ServerConfig) -> None:
    """Validate config for server startup. Raises ValueError with all errors."""
    errors: list[str] = []

    workspace = config.workspace
    if not workspace.exists():
        errors.append(f"working_dir '{workspace}' does not exist")
    elif not workspace.is_dir():
        errors.append(f"working_dir '{workspace}' is not a directory")

    if not config.llm_model:
        errors.append("llm_model is empty")
    if config.command_timeout <= 0:
        errors.append(f"command_timeout must be positive, got {config.command_timeout}")
    if config.outbound_queue_size <= 0:
        errors.append(f"outbound_queue_size must be positive, got {config.outbound_queue_size}")
    if config.max_frame_size <= 0:
        errors.append(f"max_frame_size must be positive, got {config.max_frame_size}")
    if config.max_iterations < 0:
        errors.append(f"max_iterations must be >= 0, got {config.max_iterations}")
    if config.ping_interval <= 0 or config.ping_interval >= config.pong_wait:
        errors.append(
            f"ping_interval ({config.ping_interval}) must be positive and below pong_wait ({config.pong_wait})"
        )

    valid_levels = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}
    if config.log.level.upper() not in valid_levels:
        errors.append(f"log.level '{config.log.level}' invalid, must be one of {sorted(valid_levels)}")

    if errors:
        raise ValueError(
            "klaudkod configuration errors:\n" + "\n".join(f"  - {e}" for e in errors)
        )

    if not config.llm_api_key:
        logger.warning("LLM_API_KEY is empty; only keyless providers will work")
