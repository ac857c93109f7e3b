"""Saved conversation utilities.

Typer command file providing: show, summarize, analyse and trim JSON
conversation files, plus one-shot ``ask`` and file-backed ``chat`` against a
provider.
"""

from __future__ import annotations

import json
from pathlib import Path

import typer

from chatbot.errors import ChatbotError
from chatbot.history import DEFAULT_MAX_HISTORY
from chatbot.llm import create_chatbot
from chatbot.storage import (
    load_conversation,
    read_messages,
    read_system_prompt,
    save_conversation,
)
from chatbot.text import conversation_stats, format_conversation

app = typer.Typer()


@app.command()
def show(file: str, include_system: bool = False) -> None:
    """Print a saved conversation."""
    conversation = _load(file)
    typer.echo(format_conversation(conversation, include_system=include_system))


@app.command()
def summary(file: str) -> None:
    """Print message counts for a saved conversation."""
    typer.echo(_load(file).summary())


@app.command()
def stats(file: str) -> None:
    """Print approximate token and length statistics as JSON."""
    typer.echo(json.dumps(conversation_stats(_load(file)), indent=2))


@app.command()
def trim(file: str, max_history: int, output: str = "") -> None:
    """Re-apply a history window to a saved conversation.

    Writes back to FILE unless --output is given.
    """
    if max_history < 1:
        typer.echo("Error: --max-history must be at least 1")
        raise typer.Exit(code=1)
    conversation = _load(file, max_history=max_history)
    target = save_conversation(conversation, output or file)
    typer.echo(f"Kept {len(conversation)} message(s); written to {target}.")


@app.command()
def ask(
    text: str,
    provider: str = "openai",
    model: str = "",
    system_prompt: str = "",
) -> None:
    """Ask a single question without keeping any history."""
    try:
        bot = create_chatbot(
            provider, model=model or None, system_prompt=system_prompt or None
        )
        typer.echo(bot.ask(text))
    except ChatbotError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1)


@app.command()
def chat(
    file: str,
    text: str,
    provider: str = "openai",
    model: str = "",
    max_history: int = DEFAULT_MAX_HISTORY,
) -> None:
    """Continue the conversation in FILE with TEXT and save the result.

    FILE is created if it does not exist.  A leading system message in the
    file is reused as the system prompt.
    """
    path = Path(file)
    try:
        system_prompt = read_system_prompt(path) if path.exists() else None
        bot = create_chatbot(
            provider,
            model=model or None,
            system_prompt=system_prompt,
            max_history=max_history,
        )
        if path.exists():
            bot.conversation.restore(read_messages(path))
        reply = bot.chat(text)
    except ChatbotError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1)
    save_conversation(bot.conversation, path)
    typer.echo(reply)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _load(file: str, max_history: int = DEFAULT_MAX_HISTORY):
    """Load a conversation, exiting with an error message on failure."""
    try:
        return load_conversation(file, max_history=max_history)
    except FileNotFoundError:
        typer.echo(f"Error: file does not exist: {file}")
        raise typer.Exit(code=1)
    except ChatbotError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1)
