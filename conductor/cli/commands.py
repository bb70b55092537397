"""CLI commands for conductor."""

import asyncio
import secrets

import typer
from rich.console import Console

from conductor import __logo__, __version__

app = typer.Typer(
    name="conductor",
    help=f"{__logo__} conductor - streaming agent turns",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} conductor v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """conductor - streaming agent turns."""


def _make_provider(config):
    """Pick the provider adapter: the OpenAI SDK for custom endpoints, LiteLLM otherwise."""
    from conductor.providers.litellm_provider import LiteLLMProvider
    from conductor.providers.openai_provider import OpenAIProvider

    name = config.get_provider_name()
    if not name:
        console.print("[red]No provider configured.[/red] Set an API key in ~/.conductor/.env")
        console.print("  Example: CONDUCTOR_PROVIDERS__OPENROUTER__API_KEY=sk-or-v1-xxx")
        raise typer.Exit(1)

    model = config.get_model() or None
    if config.is_custom_provider():
        return OpenAIProvider(
            api_key=config.get_api_key(),
            api_base=config.get_api_base(),
            provider=name,
            default_model=model,
        )
    return LiteLLMProvider(
        api_key=config.get_api_key(),
        api_base=config.get_api_base(),
        default_model=model or "anthropic/claude-sonnet-4-5",
        provider_name=name,
    )


async def _create_coordinator(config):
    """Wire a coordinator from config. Shared by ``chat`` and ``gateway``."""
    from conductor.agent.coordinator import TurnCoordinator
    from conductor.persistence.memory import InMemoryConversationStore
    from conductor.tools.gateway import ToolGateway
    from conductor.tools.mcp import register_mcp_tools
    from conductor.tools.registry import ToolRegistry

    registry = ToolRegistry()
    if config.tools.mcp.servers:
        count = await register_mcp_tools(registry, config.tools.mcp.servers)
        console.print(f"[dim]Loaded {count} MCP tool(s)[/dim]")

    defaults = config.agents.defaults
    return TurnCoordinator(
        provider=_make_provider(config),
        gateway=ToolGateway(registry, timeout_seconds=config.tools.timeout_seconds),
        store=InMemoryConversationStore(),
        max_iterations=defaults.max_iterations,
        connection_timeout=defaults.connection_timeout_seconds,
    )


@app.command()
def init():
    """Write a default configuration to ~/.conductor."""
    from conductor.config.loader import get_config_path, get_env_path, save_config
    from conductor.config.schema import Config

    config_path = get_config_path()
    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    config = Config()
    config.gateway.auth_token = secrets.token_urlsafe(32)
    save_config(config)
    console.print(f"[green]✓[/green] Created config at {config_path}")
    console.print(f"[green]✓[/green] Created secrets file at {get_env_path()} (mode 600)")
    console.print("\nNext: add a provider key to [cyan]~/.conductor/.env[/cyan], then run")
    console.print("  [cyan]conductor chat -m \"Hello!\"[/cyan]")


@app.command()
def chat(
    message: str = typer.Option(..., "--message", "-m", help="Message to send"),
    session_id: str = typer.Option("cli:default", "--session", "-s", help="Session ID"),
    model: str = typer.Option(None, "--model", help="Override the configured model"),
    verbose: bool = typer.Option(False, "--verbose", help="Show debug logs"),
):
    """Run one turn and stream its events to the terminal."""
    from conductor.agent.workflow import ConversationContext
    from conductor.config.loader import load_config
    from conductor.logging import configure_logging
    from conductor.transport.events import EventType

    config = load_config()
    configure_logging("DEBUG" if verbose else config.logging.level)
    defaults = config.agents.defaults

    async def run() -> int:
        coordinator = await _create_coordinator(config)
        conversation = ConversationContext(
            session_id=session_id,
            user_id="cli",
            user_message=message,
            model=model or config.get_model() or None,
            provider=config.get_provider_name(),
            temperature=defaults.temperature,
            top_p=defaults.top_p,
            context_size=defaults.context_size,
            max_tokens=defaults.max_tokens,
            tool_names=defaults.enabled_tools,
        )
        connection = await coordinator.chat(conversation)
        exit_code = 0
        async for event in connection.events():
            if event.type is EventType.TEXT:
                style = "dim" if event.stage == "decompose" else None
                console.print(event.content, end="", style=style, markup=False, highlight=False)
            elif event.type is EventType.TOOL_CALL:
                console.print(f"\n[cyan]→ {event.content}[/cyan]")
            elif event.type is EventType.WARNING:
                console.print(f"\n[yellow]⚠ {event.content}[/yellow]")
            elif event.type is EventType.ERROR:
                console.print(f"\n[red]✗ {event.content}[/red]")
                exit_code = 1
            elif event.type is EventType.END and event.content:
                console.print(event.content, markup=False, highlight=False)
        console.print()
        await coordinator.shutdown()
        return exit_code

    code = asyncio.run(run())
    if code:
        raise typer.Exit(code)


@app.command()
def gateway(
    port: int = typer.Option(None, "--port", "-p", help="Gateway port (defaults to config.gateway.port)"),
    verbose: bool = typer.Option(False, "--verbose", help="Verbose output"),
):
    """Serve the HTTP gateway."""
    import uvicorn

    from conductor.config.loader import load_config, save_config
    from conductor.gateway.api import create_gateway_app
    from conductor.logging import configure_logging, init_error_store

    config = load_config()
    configure_logging("DEBUG" if verbose else config.logging.level)
    init_error_store(config.error_log_path)

    if not config.gateway.auth_token.strip():
        config.gateway.auth_token = secrets.token_urlsafe(32)
        save_config(config)
        console.print("[yellow]Generated a gateway auth token (stored in ~/.conductor/.env)[/yellow]")

    port = port or config.gateway.port
    console.print(f"{__logo__} Starting conductor gateway on {config.gateway.host}:{port}...")

    async def serve() -> None:
        coordinator = await _create_coordinator(config)
        api_app = create_gateway_app(coordinator, config.gateway.auth_token, config.agents.defaults)
        server = uvicorn.Server(uvicorn.Config(
            api_app,
            host=config.gateway.host,
            port=port,
            log_level="warning",
            access_log=False,
        ))
        try:
            await server.serve()
        finally:
            await coordinator.shutdown()

    try:
        asyncio.run(serve())
    except KeyboardInterrupt:
        console.print("\nShutting down...")


if __name__ == "__main__":
    app()
