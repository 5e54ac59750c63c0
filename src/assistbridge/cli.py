from __future__ import annotations

from pathlib import Path

import anyio
import typer
from rich.console import Console

from . import __version__
from .assistant import AssistantClient
from .bridge import MessageBridge
from .config import BridgeSettings, ConfigError, load_settings
from .context import BotIdentity, ContextResolver
from .identity import IdentityClient
from .logging import get_logger, setup_logging
from .orchestrator import RunOrchestrator
from .store import ConversationStore, JsonFileStore
from .tools import CREATE_ZENDESK_TICKET, ToolRegistry
from .tools.zendesk import ZendeskClient
from .transport import ConsoleTransport

logger = get_logger(__name__)

EXIT_COMMANDS = frozenset({"/quit", "/exit"})

_CONFIG_PATH_OPTION = typer.Option(
    None,
    "--config",
    help="Path to assistbridge.toml (defaults to ./.assistbridge or ~/.assistbridge).",
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


def _load_settings_or_exit(config_path: Path | None) -> tuple[BridgeSettings, Path]:
    try:
        return load_settings(config_path)
    except ConfigError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


def _mask(secret: str) -> str:
    if len(secret) <= 8:
        return "***"
    return f"{secret[:3]}…{secret[-4:]}"


def check(config_path: Path | None = _CONFIG_PATH_OPTION) -> None:
    """Validate the configuration and print a summary."""
    settings, path = _load_settings_or_exit(config_path)
    lines = [
        f"config: {path}",
        f"assistant: {settings.assistant_id}",
        f"api key: {_mask(settings.openai_api_key)}",
        f"context: {settings.context}",
        f"prefix: {settings.prefix or '(none)'}",
        f"prefix reply: {settings.prefix_reply}",
        f"prefix dm: {settings.prefix_dm}",
        f"timeout: {settings.timeout_s:g}s (poll every {settings.poll_interval_s:g}s)",
        f"state: {settings.state_path}",
        f"identity lookups: {'enabled' if settings.identity_api_url else 'disabled'}",
        f"tools: {CREATE_ZENDESK_TICKET if settings.zendesk else '(none)'}",
    ]
    typer.echo("\n".join(lines))


async def _chat(settings: BridgeSettings, console: Console) -> None:
    transport = ConsoleTransport(console=console)
    store = JsonFileStore(settings.state_path)
    assistant = AssistantClient(settings.openai_api_key)
    zendesk = ZendeskClient(settings.zendesk) if settings.zendesk else None
    identity = (
        IdentityClient(settings.identity_api_url, cache=store)
        if settings.identity_api_url
        else None
    )
    tools = ToolRegistry()
    if zendesk is not None:
        tools = tools.with_tool(CREATE_ZENDESK_TICKET, zendesk)
    bridge = MessageBridge(
        settings=settings,
        transport=transport,
        resolver=ContextResolver(
            settings=settings,
            identity=BotIdentity(
                user_id=transport.user_id, display_name=transport.display_name
            ),
            events=transport,
        ),
        orchestrator=RunOrchestrator(
            api=assistant,
            assistant_id=settings.assistant_id,
            tools=tools,
            timeout_s=settings.timeout_s,
            poll_interval_s=settings.poll_interval_s,
        ),
        conversations=ConversationStore(store, context=settings.context),
        identity=identity,
    )
    logger.info("chat.started", state_path=str(store.path))
    try:
        while True:
            try:
                line = await anyio.to_thread.run_sync(console.input, "[bold]> [/]")
            except EOFError:
                break
            text = line.strip()
            if not text:
                continue
            if text in EXIT_COMMANDS:
                break
            await bridge.handle_message(transport.message(text))
    finally:
        await assistant.close()
        if zendesk is not None:
            await zendesk.close()
        if identity is not None:
            await identity.close()


def chat(
    config_path: Path | None = _CONFIG_PATH_OPTION,
    debug: bool = typer.Option(False, "--debug", help="Log debug output."),
) -> None:
    """Talk to the assistant from the terminal through the full bridge pipeline."""
    setup_logging(debug=debug)
    settings, _ = _load_settings_or_exit(config_path)
    try:
        anyio.run(_chat, settings, Console())
    except KeyboardInterrupt:
        raise typer.Exit(code=130) from None


def create_app() -> typer.Typer:
    app = typer.Typer(
        add_completion=False,
        invoke_without_command=True,
        help="Bridge chat rooms to a remote assistant.",
    )

    @app.callback()
    def _root(
        version: bool = typer.Option(
            False,
            "--version",
            help="Show the version and exit.",
            callback=_version_callback,
            is_eager=True,
        ),
    ) -> None:
        _ = version

    app.command(name="check")(check)
    app.command(name="chat")(chat)
    return app


def main() -> None:
    app = create_app()
    app()


if __name__ == "__main__":
    main()
