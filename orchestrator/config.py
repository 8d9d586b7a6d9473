"""Configuration loading and validation."""

import json
import os
from dataclasses import dataclass, field
from orchestrator.exceptions import ConfigError

CHAT_FORMATS = ("content_only", "generic", "hermes_2_pro", "llama_3_x", "mistral_nemo")
TOOL_CHOICES = ("auto", "required", "none")
TRANSPORTS = ("sse", "stdio")

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant that can execute shell commands. When the user asks "
    "for something that requires a command, generate and execute the appropriate shell "
    "command. Be careful and only execute safe commands."
)


@dataclass
class ModelConfig:
    """Configuration for the Ollama model that drives generation."""
    model_name: str = "qwen2.5:7b"
    base_url: str = "http://localhost:11434"
    temperature: float = 0.0
    options: dict = field(default_factory=dict)


@dataclass
class OllamaSettings:
    """Configuration for Ollama connectivity and retries."""
    connect_timeout: float = 5.0
    read_timeout: float = 120.0
    max_retries: int = 3


@dataclass
class GenerationConfig:
    """Configuration for the generate-parse-execute loop."""
    n_predict: int = 256
    chat_format: str = "hermes_2_pro"
    tool_choice: str = "auto"
    max_rounds: int = 1
    system_prompt: str = DEFAULT_SYSTEM_PROMPT


@dataclass
class ShellConfig:
    """Configuration for the local shell_command action."""
    confirm: bool = False


@dataclass
class MCPServerConfig:
    """Configuration for a single MCP server."""
    name: str
    transport: str = "sse"  # "sse" or "stdio"
    host: str = "localhost"
    port: int = 8889
    type: str = "service"
    command: str | None = None
    args: list[str] = field(default_factory=list)

    @property
    def address(self) -> str:
        if self.transport == "stdio":
            return " ".join([self.command or ""] + list(self.args)).strip()
        return f"{self.host}:{self.port}"


def default_server() -> MCPServerConfig:
    """The server the client falls back to when none is configured."""
    return MCPServerConfig(
        name="default-agent", transport="sse", host="localhost", port=8889, type="llama-agent"
    )


@dataclass
class MCPConfig:
    """Configuration for MCP providers."""
    client_name: str = "llama-mcp-client"
    client_version: str = "0.1.0"
    handshake_timeout: float = 5.0
    call_timeout: float | None = None
    show_instructions: bool = True
    servers: list[MCPServerConfig] = field(default_factory=list)


@dataclass
class OrchestratorConfig:
    """Complete orchestrator configuration."""
    model: ModelConfig = field(default_factory=ModelConfig)
    ollama: OllamaSettings = field(default_factory=OllamaSettings)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    shell: ShellConfig = field(default_factory=ShellConfig)
    mcp: MCPConfig = field(default_factory=MCPConfig)
    log_dir: str = "data/logs"


def load_config(config_path: str = "config.json") -> OrchestratorConfig:
    """Load configuration from JSON file with defaults."""
    if not os.path.exists(config_path):
        config = OrchestratorConfig()
        _apply_env(config)
        return config

    try:
        with open(config_path, "r") as f:
            raw = json.load(f)
    except (json.JSONDecodeError, IOError) as e:
        raise ConfigError(f"Failed to load config from {config_path}: {e}")

    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {config_path} must contain a JSON object")

    log_dir = raw.get("log_dir", "data/logs")
    if not isinstance(log_dir, str) or not log_dir.strip():
        raise ConfigError("log_dir must be a non-empty string")

    config = OrchestratorConfig(
        model=_load_model_settings(raw.get("model", {}) or {}),
        ollama=_load_ollama_settings(raw.get("ollama", {}) or {}),
        generation=_load_generation_settings(raw.get("generation", {}) or {}),
        shell=_load_shell_settings(raw.get("shell", {}) or {}),
        mcp=_load_mcp_settings(raw.get("mcp", {}) or {}),
        log_dir=log_dir,
    )
    _apply_env(config)
    return config


def _apply_env(config: OrchestratorConfig) -> None:
    env_base_url = os.getenv("OLLAMA_BASE_URL")
    if env_base_url:
        config.model.base_url = env_base_url


def _load_model_settings(raw: dict) -> ModelConfig:
    """Parse and validate model settings."""
    _require_object(raw, "model")
    model_name = raw.get("model_name", ModelConfig.model_name)
    if not isinstance(model_name, str) or not model_name.strip():
        raise ConfigError("model.model_name must be a non-empty string")

    base_url = raw.get("base_url", ModelConfig.base_url)
    if not isinstance(base_url, str) or not base_url.strip():
        raise ConfigError("model.base_url must be a non-empty string")

    options = raw.get("options", {})
    if options is None:
        options = {}
    if not isinstance(options, dict):
        raise ConfigError("model.options must be an object")

    return ModelConfig(
        model_name=model_name.strip(),
        base_url=base_url.strip(),
        temperature=_coerce_float(raw.get("temperature", 0.0), "model.temperature", 0.0),
        options=options,
    )


def _load_ollama_settings(raw: dict) -> OllamaSettings:
    """Parse and validate Ollama settings from config."""
    _require_object(raw, "ollama")
    return OllamaSettings(
        connect_timeout=_coerce_float(raw.get("connect_timeout", 5.0), "ollama.connect_timeout", 0.1),
        read_timeout=_coerce_float(raw.get("read_timeout", 120.0), "ollama.read_timeout", 0.1),
        max_retries=_coerce_int(raw.get("max_retries", 3), "ollama.max_retries", 1),
    )


def _load_generation_settings(raw: dict) -> GenerationConfig:
    """Parse and validate generation settings."""
    _require_object(raw, "generation")
    chat_format = raw.get("chat_format", "hermes_2_pro")
    if chat_format not in CHAT_FORMATS:
        raise ConfigError(f"generation.chat_format must be one of: {', '.join(CHAT_FORMATS)}")

    tool_choice = raw.get("tool_choice", "auto")
    if tool_choice not in TOOL_CHOICES:
        raise ConfigError(f"generation.tool_choice must be one of: {', '.join(TOOL_CHOICES)}")

    system_prompt = raw.get("system_prompt", DEFAULT_SYSTEM_PROMPT)
    if not isinstance(system_prompt, str):
        raise ConfigError("generation.system_prompt must be a string")

    return GenerationConfig(
        n_predict=_coerce_int(raw.get("n_predict", 256), "generation.n_predict", 0),
        chat_format=chat_format,
        tool_choice=tool_choice,
        max_rounds=_coerce_int(raw.get("max_rounds", 1), "generation.max_rounds", 1),
        system_prompt=system_prompt,
    )


def _load_shell_settings(raw: dict) -> ShellConfig:
    """Parse and validate shell_command settings."""
    _require_object(raw, "shell")
    confirm = raw.get("confirm", False)
    if not isinstance(confirm, bool):
        raise ConfigError("shell.confirm must be a boolean")
    return ShellConfig(confirm=confirm)


def _load_mcp_settings(raw: dict) -> MCPConfig:
    """Parse and validate MCP settings."""
    _require_object(raw, "mcp")
    client_name = raw.get("client_name", MCPConfig.client_name)
    if not isinstance(client_name, str) or not client_name.strip():
        raise ConfigError("mcp.client_name must be a non-empty string")

    client_version = raw.get("client_version", MCPConfig.client_version)
    if not isinstance(client_version, str) or not client_version.strip():
        raise ConfigError("mcp.client_version must be a non-empty string")

    call_timeout = raw.get("call_timeout")
    if call_timeout is not None:
        call_timeout = _coerce_float(call_timeout, "mcp.call_timeout", 0.1)

    show_instructions = raw.get("show_instructions", True)
    if not isinstance(show_instructions, bool):
        raise ConfigError("mcp.show_instructions must be a boolean")

    servers_raw = raw.get("servers", [])
    if servers_raw is None:
        servers_raw = []
    if not isinstance(servers_raw, list):
        raise ConfigError("mcp.servers must be a list")

    servers: list[MCPServerConfig] = []
    for idx, server in enumerate(servers_raw):
        if not isinstance(server, dict):
            raise ConfigError("mcp.servers entries must be objects")
        servers.append(_load_server(server, idx))

    return MCPConfig(
        client_name=client_name.strip(),
        client_version=client_version.strip(),
        handshake_timeout=_coerce_float(raw.get("handshake_timeout", 5.0), "mcp.handshake_timeout", 0.1),
        call_timeout=call_timeout,
        show_instructions=show_instructions,
        servers=servers,
    )


def _load_server(server: dict, idx: int) -> MCPServerConfig:
    name = server.get("name")
    transport = server.get("transport", "sse")
    if not isinstance(name, str) or not name.strip():
        raise ConfigError(f"mcp.servers[{idx}].name must be a non-empty string")
    if transport not in TRANSPORTS:
        raise ConfigError(f"mcp.servers[{idx}].transport must be 'sse' or 'stdio'")

    server_type = server.get("type", "service")
    if not isinstance(server_type, str) or not server_type.strip():
        raise ConfigError(f"mcp.servers[{idx}].type must be a non-empty string")

    command = server.get("command")
    args = server.get("args", [])
    host = server.get("host", "localhost")

    if transport == "stdio":
        if not isinstance(command, str) or not command.strip():
            raise ConfigError(f"mcp.servers[{idx}].command must be a non-empty string for stdio")
        if args is None:
            args = []
        if not isinstance(args, list):
            raise ConfigError(f"mcp.servers[{idx}].args must be a list")
        port = 0
    else:
        if not isinstance(host, str) or not host.strip():
            raise ConfigError(f"mcp.servers[{idx}].host must be a non-empty string for sse")
        port = _coerce_int(server.get("port"), f"mcp.servers[{idx}].port", 1)
        if port > 65535:
            raise ConfigError(f"mcp.servers[{idx}].port must be <= 65535")

    return MCPServerConfig(
        name=name.strip(),
        transport=transport,
        host=host.strip() if isinstance(host, str) else "localhost",
        port=port,
        type=server_type.strip(),
        command=command.strip() if isinstance(command, str) else None,
        args=[str(a) for a in args] if isinstance(args, list) else [],
    )


def parse_server_spec(name: str, host: str, port: str, server_type: str) -> MCPServerConfig:
    """Build an SSE server config from the four ``--add-server`` values."""
    if not name.strip():
        raise ConfigError("server name must be a non-empty string")
    if not host.strip():
        raise ConfigError(f"server '{name}' host must be a non-empty string")
    port_num = _coerce_int(port, f"server '{name}' port", 1)
    if port_num > 65535:
        raise ConfigError(f"server '{name}' port must be <= 65535")
    return MCPServerConfig(
        name=name.strip(),
        transport="sse",
        host=host.strip(),
        port=port_num,
        type=server_type.strip() or "service",
    )


def _require_object(raw: object, name: str) -> None:
    if not isinstance(raw, dict):
        raise ConfigError(f"{name} must be an object")


def _coerce_float(value: object, name: str, min_value: float) -> float:
    """Coerce config value to float with basic validation."""
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be a number")
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number")

    if value < min_value:
        raise ConfigError(f"{name} must be >= {min_value}")
    return value


def _coerce_int(value: object, name: str, min_value: int) -> int:
    """Coerce config value to int with basic validation."""
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be an integer")
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer")

    if value < min_value:
        raise ConfigError(f"{name} must be >= {min_value}")
    return value
