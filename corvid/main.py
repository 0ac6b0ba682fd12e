"""corvid entry point: wires settings, providers, tools and the agent loop."""

from __future__ import annotations

import asyncio
import signal
import sys
from pathlib import Path
from typing import Any

import click

from corvid import __version__
from corvid.config import Settings, load_settings
from corvid.core.agent_loop import AgentLoop, TurnResult
from corvid.core.approval import ApprovalMode, ApprovalPolicy, ConfirmationOutcome
from corvid.core.budget import token_limit
from corvid.core.cancel import CancelToken
from corvid.core.checkpoint import Checkpointer, CheckpointStore
from corvid.core.history import ConversationHistory
from corvid.core.llm import build_default_registry
from corvid.core.llm.retry import RetryPolicy
from corvid.core.llm.types import ChunkType, StreamChunk
from corvid.core.system_prompt import build_system_prompt
from corvid.core.tool_scheduler import ScheduledToolCall, ToolCallStatus, ToolScheduler
from corvid.errors import CorvidError
from corvid.tools import build_default_tools
from corvid.tools.base import ToolConfirmation
from corvid.utils.logging import get_logger, setup_logging

log = get_logger(__name__)

_OUTCOMES = {
    "y": ConfirmationOutcome.PROCEED_ONCE,
    "a": ConfirmationOutcome.PROCEED_ALWAYS,
    "n": ConfirmationOutcome.CANCEL,
}


class TerminalApprover:
    """Asks on the terminal, one confirmation at a time."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()

    async def __call__(
        self, call: ScheduledToolCall, confirmation: ToolConfirmation
    ) -> ConfirmationOutcome:
        async with self._lock:
            click.echo(f"\n{confirmation.title}", err=True)
            if confirmation.details:
                click.echo(confirmation.details, err=True)
            choice = await asyncio.to_thread(
                click.prompt,
                "Allow? [y]es once / [a]lways / [n]o",
                type=click.Choice(list(_OUTCOMES)),
                default="n",
                err=True,
            )
            return _OUTCOMES[choice]


def _print_chunk(chunk: StreamChunk) -> None:
    if chunk.type is ChunkType.CONTENT and chunk.content:
        click.echo(chunk.content, nl=False)
    elif chunk.type is ChunkType.DONE:
        click.echo()


def _print_update(call: ScheduledToolCall) -> None:
    if call.status is ToolCallStatus.EXECUTING and call.tool is not None:
        click.echo(f"> {call.tool.get_description(call.params)}", err=True)
    elif call.status is ToolCallStatus.ERROR:
        click.echo(f"! {call.name}: {call.error}", err=True)
    elif call.status is ToolCallStatus.CANCELLED:
        click.echo(f"x {call.name}: {call.error}", err=True)


class Corvid:
    """Application wiring for one working directory."""

    def __init__(
        self,
        settings: Settings,
        provider_name: str | None = None,
        cwd: Path | None = None,
        interactive: bool = True,
    ) -> None:
        self.settings = settings
        self.cwd = (cwd or Path.cwd()).resolve()
        self.registry = build_default_registry()
        self.provider_name = (
            provider_name or settings.provider or self.registry.default_provider_name()
        )
        retry = RetryPolicy(
            max_attempts=settings.retry.max_attempts,
            initial_delay=settings.retry.initial_delay,
            max_delay=settings.retry.max_delay,
        )
        self.provider = self.registry.create(
            self.provider_name, settings.provider_config(self.provider_name), retry=retry
        )

        self.tools = build_default_tools(self.cwd)
        self.history = ConversationHistory(
            build_system_prompt(self.tools, self.cwd),
            default_budget=settings.context_size or token_limit(self.provider.model),
        )
        self.policy = ApprovalPolicy(settings.approval_mode)

        self.store: CheckpointStore | None = None
        self.checkpointer: Checkpointer | None = None
        if settings.checkpointing.enabled:
            self.store = CheckpointStore(settings.get_checkpoint_db())
            self.checkpointer = Checkpointer(self.store, self.history)

        self.scheduler = ToolScheduler(
            self.tools,
            self.policy,
            approval_handler=TerminalApprover() if interactive else None,
            checkpointer=self.checkpointer,
            on_update=_print_update,
        )
        self.loop = AgentLoop(
            self.provider,
            self.history,
            self.scheduler,
            self.tools,
            model=settings.model,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            token_budget=settings.context_size,
            stream=settings.stream,
            max_iterations=settings.max_iterations,
            on_chunk=_print_chunk,
        )

    async def start(self) -> None:
        log.info("corvid_starting", version=__version__, provider=self.provider_name)
        if self.store is not None:
            await self.store.start()

    async def stop(self) -> None:
        await self.provider.close()
        if self.store is not None:
            await self.store.stop()


def _install_interrupt(token: CancelToken) -> None:
    if sys.platform == "win32":
        return
    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, token.cancel, "Request cancelled.")


def _remove_interrupt() -> None:
    if sys.platform != "win32":
        asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)


async def run_ask(app: Corvid, prompt: str) -> TurnResult:
    token = CancelToken()
    await app.start()
    _install_interrupt(token)
    try:
        result = await app.loop.run_turn(prompt, token)
    finally:
        _remove_interrupt()
        await app.stop()

    if not app.settings.stream and result.text:
        click.echo(result.text)
    if result.cancelled:
        click.echo("[cancelled]", err=True)
    if result.usage is not None:
        log.info(
            "turn_usage",
            prompt_tokens=result.usage.prompt_tokens,
            completion_tokens=result.usage.completion_tokens,
            total_tokens=result.usage.total_tokens,
        )
    return result


async def run_restore(app: Corvid, tag: str | None) -> None:
    assert app.store is not None and app.checkpointer is not None
    await app.start()
    try:
        if tag is None:
            tags = await app.store.list_tags()
            click.echo("\n".join(tags) if tags else "No checkpoints found.")
            return
        checkpoint = await app.checkpointer.restore(tag)
        click.echo(f"Restored {tag}; re-running {checkpoint.tool_name}.", err=True)
        call = await app.loop.run_tool(checkpoint.tool_name, checkpoint.tool_args)
        click.echo(call.response_text)
    finally:
        await app.stop()


def _run(coro: Any) -> Any:
    try:
        return asyncio.run(coro)
    except CorvidError as e:
        raise click.ClickException(str(e)) from e


@click.group()
@click.version_option(__version__, prog_name="corvid")
@click.option("--config", "config_path", default=None, help="Path to config YAML file")
@click.option("--log-level", default=None, help="Log level (DEBUG, INFO, WARNING, ERROR)")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, log_level: str | None) -> None:
    """corvid, a terminal coding assistant."""
    settings = load_settings(config_path, log_level=log_level)
    setup_logging(level=settings.log_level, json_output=settings.log_json)
    ctx.obj = settings


@cli.command()
@click.argument("prompt")
@click.option("--provider", "provider_name", default=None, help="Provider to use")
@click.option("--model", default=None, help="Model id override")
@click.option("--yolo", is_flag=True, help="Run every tool call without asking")
@click.option("--no-stream", is_flag=True, help="Wait for the full response")
@click.pass_obj
def ask(
    settings: Settings,
    prompt: str,
    provider_name: str | None,
    model: str | None,
    yolo: bool,
    no_stream: bool,
) -> None:
    """Send one prompt and let the model use tools until it answers."""
    updates: dict[str, Any] = {}
    if model:
        updates["model"] = model
    if yolo:
        updates["approval_mode"] = ApprovalMode.YOLO
    if no_stream:
        updates["stream"] = False
    if updates:
        settings = settings.model_copy(update=updates)

    try:
        app = Corvid(settings, provider_name, interactive=sys.stdin.isatty())
    except CorvidError as e:
        raise click.ClickException(str(e)) from e
    _run(run_ask(app, prompt))


@cli.command()
@click.option("--provider", "provider_name", default=None, help="Provider to list")
@click.pass_obj
def models(settings: Settings, provider_name: str | None) -> None:
    """List the models a provider offers."""
    registry = build_default_registry()
    name = provider_name or settings.provider or registry.default_provider_name()

    async def _list() -> list[str]:
        provider = registry.create(name, settings.provider_config(name))
        try:
            return await provider.get_models()
        finally:
            await provider.close()

    for model_id in _run(_list()):
        click.echo(model_id)


@cli.command()
@click.pass_obj
def providers(settings: Settings) -> None:
    """Show every provider and whether it is ready to use."""
    registry = build_default_registry()

    async def _check() -> list[tuple[str, bool, list[str]]]:
        results = []
        for name in registry.names():
            healthy, issues = await registry.validate(name, settings.provider_config(name))
            results.append((name, healthy, issues))
        return results

    for name, healthy, issues in _run(_check()):
        status = "ok" if healthy else "; ".join(issues)
        click.echo(f"{name:<12} {status}")


@cli.command()
@click.argument("tag", required=False)
@click.option("--provider", "provider_name", default=None, help="Provider to use")
@click.pass_obj
def restore(settings: Settings, tag: str | None, provider_name: str | None) -> None:
    """List checkpoints, or restore one and re-run its tool call."""
    settings = settings.model_copy(
        update={"checkpointing": settings.checkpointing.model_copy(update={"enabled": True})}
    )
    try:
        app = Corvid(settings, provider_name, interactive=sys.stdin.isatty())
    except CorvidError as e:
        raise click.ClickException(str(e)) from e
    _run(run_restore(app, tag))


if __name__ == "__main__":
    cli()
