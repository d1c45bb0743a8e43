from __future__ import annotations

import asyncio
from importlib import metadata
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from codey.bot import VERIFY, ChallengeBot, ConsoleNotifier
from codey.core.config import CONFIG_NAME, CodeyConfig, find_config, load_config
from codey.core.errors import LoadError
from codey.core.execution import WandboxClient
from codey.core.logging_utils import setup_logging
from codey.core.problems import Problem, load_problems
from codey.core.registry import ChallengeRegistry


app = typer.Typer(add_completion=False, help="Codey: timed coding challenges for chat channels")
console = Console()

QUIT = "$quit"
JOIN = "$join"
VERIFY_COMMAND = "$verify"


def _show_version(value: bool) -> None:
    if not value:
        return
    try:
        version = metadata.version("codey")
    except metadata.PackageNotFoundError:
        version = "0.0.0+local"
    console.print(f"codey {version}")
    raise typer.Exit()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_show_version,
        help="Show the Codey version and exit.",
        is_eager=True,
    ),
):
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit()


def _get_env(config_path: str) -> tuple[CodeyConfig, list[Problem]]:
    try:
        cfg = load_config(find_config(config_path))
    except (FileNotFoundError, ValueError) as e:
        console.print(f"❌ {e}")
        raise typer.Exit(code=4)
    setup_logging(cfg.log_level)
    try:
        problems = load_problems(cfg.problems_path)
    except LoadError as e:
        console.print(f"❌ Could not load problems: {e}")
        raise typer.Exit(code=4)
    return cfg, problems


def _client(cfg: CodeyConfig) -> WandboxClient:
    return WandboxClient(
        url=cfg.execution.url,
        compilers=cfg.execution.compilers,
        timeout=cfg.execution.timeout,
    )


def _find_problem(problems: list[Problem], name: str) -> Problem:
    for problem in problems:
        if problem.name == name:
            return problem
    console.print(f"❌ Unknown problem: {name}")
    raise typer.Exit(code=2)


problems_app = typer.Typer(help="Problem operations")
app.add_typer(problems_app, name="problems")


@problems_app.command("list")
def problems_list(
    config: str = typer.Option(CONFIG_NAME, "--config", help="Path to config file"),
):
    _, problems = _get_env(config)
    if not problems:
        console.print("No challenges found")
        return

    table = Table(title="Codey Problems")
    table.add_column("Name", style="bold")
    table.add_column("Test cases", justify="right")
    table.add_column("Description")
    for p in problems:
        table.add_row(p.name, str(len(p.testcases)), p.description.splitlines()[0] if p.description else "")
    console.print(table)


@problems_app.command("show")
def problems_show(
    name: str = typer.Argument(..., help="Problem name"),
    config: str = typer.Option(CONFIG_NAME, "--config", help="Path to config file"),
):
    _, problems = _get_env(config)
    problem = _find_problem(problems, name)
    console.print(f"[bold]{problem.name}[/bold]\n")
    if problem.description:
        console.print(problem.description + "\n")

    table = Table(title="Test cases")
    table.add_column("#", justify="right")
    table.add_column("Input")
    table.add_column("Expected output")
    for i, tc in enumerate(problem.testcases, start=1):
        table.add_row(str(i), tc.input, tc.output)
    console.print(table)


@app.command("verify")
def verify(
    problem_name: str = typer.Argument(..., help="Problem name"),
    source: Path = typer.Argument(..., exists=True, dir_okay=False, help="Source file to verify"),
    lang: str = typer.Option("", "--lang", "-l", help="Language tag (defaults to the file extension)"),
    config: str = typer.Option(CONFIG_NAME, "--config", help="Path to config file"),
):
    cfg, problems = _get_env(config)
    problem = _find_problem(problems, problem_name)
    code = source.read_text(encoding="utf-8")
    language = lang or source.suffix.lstrip(".")

    async def _run():
        async with _client(cfg) as client:
            registry = ChallengeRegistry(cfg.challenge_duration)
            bot = ChallengeBot(
                [problem],
                registry,
                client,
                ConsoleNotifier(console),
                verification_timeout=cfg.verification_timeout,
                audit_path=cfg.audit_path,
            )
            channel = "local"
            challenge = registry.create(channel, problem)
            try:
                return await bot.verify(code, language, channel, challenge)
            finally:
                await bot.close()

    verdict = asyncio.run(_run())
    if verdict is None:
        raise typer.Exit(code=5)
    if verdict.passed:
        console.print(f"🏁 [bold green]PASS[/bold green] {verdict.passes}/{verdict.total}")
    else:
        console.print(f"🧱 [bold red]FAIL[/bold red] {verdict.passes}/{verdict.total}")
        raise typer.Exit(code=5)


async def _read_message(prompt: str) -> str | None:
    """Read one chat message; fenced code blocks may span several lines."""
    try:
        lines = [await asyncio.to_thread(console.input, prompt)]
        while "\n".join(lines).count("```") % 2 == 1:
            lines.append(await asyncio.to_thread(console.input, "... "))
    except EOFError:
        return None
    return "\n".join(lines)


@app.command("chat")
def chat(
    channel: str = typer.Option("general", "--channel", "-c", help="Channel to start in"),
    config: str = typer.Option(CONFIG_NAME, "--config", help="Path to config file"),
):
    cfg, problems = _get_env(config)
    console.print(
        f"Commands: $create, $show, {VERIFY} or {VERIFY_COMMAND} (verify last code message), "
        f"{JOIN} <channel>, {QUIT}"
    )

    async def _run():
        async with _client(cfg) as client:
            bot = ChallengeBot(
                problems,
                ChallengeRegistry(cfg.challenge_duration),
                client,
                ConsoleNotifier(console),
                verification_timeout=cfg.verification_timeout,
                audit_path=cfg.audit_path,
            )
            current = channel
            last_code: dict[str, int] = {}
            message_id = 0
            try:
                while True:
                    raw = await _read_message(f"#{current}> ")
                    if raw is None or raw.strip() == QUIT:
                        break
                    text = raw.strip()
                    if text.startswith(JOIN + " "):
                        current = text[len(JOIN):].strip() or current
                        continue
                    if text in (VERIFY, VERIFY_COMMAND):
                        if current not in last_code:
                            console.print("Nothing to verify yet")
                            continue
                        await bot.on_reaction(last_code[current], VERIFY, current)
                        continue

                    message_id += 1
                    if await bot.on_message(raw, current, message_id):
                        last_code[current] = message_id
                        console.print(f"{VERIFY} react with {VERIFY} to verify")
            finally:
                await bot.close()

    asyncio.run(_run())
