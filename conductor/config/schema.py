"""Settings models. Field names are snake_case here and camelCase in config.json."""

from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AgentDefaults(BaseModel):
    """Default generation and turn settings."""
    provider: str = "openrouter"  # Built-in provider name or a custom provider's name
    model: str = ""  # Empty means the provider's own default
    max_tokens: int = 4096
    temperature: float = 0.7
    top_p: float | None = None
    context_size: int = 20  # Prior messages kept in the conversation window
    max_iterations: int = 30
    connection_timeout_seconds: int = 1800
    enabled_tools: list[str] | None = None  # None enables every available tool


class AgentsConfig(BaseModel):
    defaults: AgentDefaults = Field(default_factory=AgentDefaults)


class ProviderConfig(BaseModel):
    """Key, endpoint and model for one built-in provider."""
    api_key: str = ""
    api_base: str | None = None
    model: str = ""


class CustomProviderConfig(BaseModel):
    """A named OpenAI-compatible endpoint."""
    name: str = ""
    api_base: str = ""
    api_key: str = ""
    model: str = ""


class ProvidersConfig(BaseModel):
    anthropic: ProviderConfig = Field(default_factory=ProviderConfig)
    openai: ProviderConfig = Field(default_factory=ProviderConfig)
    openrouter: ProviderConfig = Field(default_factory=ProviderConfig)
    deepseek: ProviderConfig = Field(default_factory=ProviderConfig)
    gemini: ProviderConfig = Field(default_factory=ProviderConfig)
    custom: list[CustomProviderConfig] = Field(default_factory=list)


# Order matters for fallback detection
BUILTIN_PROVIDERS = ["openrouter", "deepseek", "anthropic", "openai", "gemini"]


class GatewayConfig(BaseModel):
    """HTTP gateway configuration."""
    host: str = "127.0.0.1"
    port: int = 18790
    auth_token: str = ""  # Bearer token required on every endpoint except /health


class MCPServerConfig(BaseModel):
    """One MCP server whose tools are exposed to the agent loop."""
    name: str
    enabled: bool = True
    transport: str = "stdio"  # "stdio" or "http"
    command: str = ""
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    cwd: str = ""
    url: str = ""
    headers: dict[str, str] = Field(default_factory=dict)
    timeout_seconds: int = 30


class MCPConfig(BaseModel):
    servers: list[MCPServerConfig] = Field(default_factory=list)


class ToolsConfig(BaseModel):
    timeout_seconds: int = 60
    mcp: MCPConfig = Field(default_factory=MCPConfig)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    error_log_path: str = "~/.conductor/errors.jsonl"


class Config(BaseSettings):
    """Root configuration for conductor."""
    agents: AgentsConfig = Field(default_factory=AgentsConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="CONDUCTOR_",
        env_nested_delimiter="__",
    )

    @property
    def error_log_path(self) -> Path:
        return Path(self.logging.error_log_path).expanduser()

    def _active_provider(self) -> tuple[str, ProviderConfig | CustomProviderConfig] | None:
        """Selected provider and its settings.

        An explicit ``agents.defaults.provider`` must name a built-in or a
        custom provider. Without one, the first built-in holding a key wins.
        """
        wanted = (self.agents.defaults.provider or "").strip().lower()
        if not wanted:
            keyed = [n for n in BUILTIN_PROVIDERS if getattr(self.providers, n).api_key]
            return (keyed[0], getattr(self.providers, keyed[0])) if keyed else None
        if wanted in BUILTIN_PROVIDERS:
            return wanted, getattr(self.providers, wanted)
        matches = [c for c in self.providers.custom if c.name.strip().lower() == wanted]
        return (wanted, matches[0]) if matches else None

    def get_provider_name(self) -> str | None:
        active = self._active_provider()
        return active[0] if active else None

    def is_custom_provider(self) -> bool:
        active = self._active_provider()
        return active is not None and isinstance(active[1], CustomProviderConfig)

    def get_api_key(self) -> str | None:
        active = self._active_provider()
        return (active[1].api_key or None) if active else None

    def get_api_base(self) -> str | None:
        active = self._active_provider()
        return (active[1].api_base or None) if active else None

    def get_model(self) -> str:
        """Model for new turns: the agent default, else the provider's own model."""
        if self.agents.defaults.model:
            return self.agents.defaults.model
        active = self._active_provider()
        return active[1].model if active else ""
