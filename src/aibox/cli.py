"""CLI bootstrap entry point for aibox."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable

from prompt_toolkit import PromptSession
from prompt_toolkit.history import FileHistory

from .ai import ChatTurn, StreamEvent
from .auth import DeviceCode, PollStatus
from .config import AppConfig, load_config
from .constants import APP_NAME, APP_VERSION, REPL_HISTORY_FILE, SECRET_SETTING_KEYS, SETTING_KEYS
from .errors import AiboxError, ConfigError
from .logging import build_run_log_path, log_event, sanitize_error_message, setup_logging, summarize_text
from .service import AiBox
from .settings import mask_secret, masked_settings, validate_setting_key

__all__ = ["main", "build_parser"]

INGESTIBLE_SUFFIXES = (".txt", ".md", ".markdown")
SLOW_DOWN_INCREMENT_SEC = 5
EXIT_COMMANDS = ("/exit", "/quit")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="aibox - multi-provider AI chat with a local knowledge base",
    )
    parser.add_argument("--version", action="version", version=f"{APP_NAME} {APP_VERSION}")
    parser.add_argument("-c", "--config", help="Path to config file (JSON, optional)")
    parser.add_argument("-l", "--log", help="Path to log file (default: new file in logs_dir)")

    commands = parser.add_subparsers(dest="command", required=True)

    chat = commands.add_parser("chat", help="Interactive chat session")
    chat.add_argument("model", nargs="?", help="Model reference, e.g. openai/gpt-4o")
    chat.add_argument("--rag", action="store_true", help="Augment prompts with the knowledge base")
    chat.add_argument("-k", "--top-k", type=int, help="Number of excerpts to retrieve")

    ask = commands.add_parser("ask", help="Ask a single question and stream the answer")
    ask.add_argument("model", help="Model reference, e.g. claude/claude-sonnet-4-20250514")
    ask.add_argument("prompt", help="Question text")
    ask.add_argument("--rag", action="store_true", help="Augment the prompt with the knowledge base")
    ask.add_argument("-k", "--top-k", type=int, help="Number of excerpts to retrieve")

    models = commands.add_parser("models", help="List models for a provider")
    models.add_argument("provider", help="openai, claude, ollama or copilot")

    ingest = commands.add_parser("ingest", help="Add a text or markdown file to the knowledge base")
    ingest.add_argument("file", help="Path to a .txt or .md file")

    search = commands.add_parser("search", help="Search the knowledge base")
    search.add_argument("query", help="Query text")
    search.add_argument("-k", "--top-k", type=int, help="Number of results")

    docs = commands.add_parser("docs", help="List or delete ingested documents")
    docs_commands = docs.add_subparsers(dest="docs_command", required=True)
    docs_commands.add_parser("list", help="List documents")
    docs_delete = docs_commands.add_parser("delete", help="Delete a document and its chunks")
    docs_delete.add_argument("document_id")

    commands.add_parser("login", help="Log in to GitHub Copilot (device flow)")
    commands.add_parser("logout", help="Forget GitHub Copilot credentials")

    settings = commands.add_parser("settings", help="Read or change settings")
    settings_commands = settings.add_subparsers(dest="settings_command", required=True)
    settings_commands.add_parser("list", help="Show settings (secrets masked)")
    settings_get = settings_commands.add_parser("get", help="Show one setting")
    settings_get.add_argument("key", choices=SETTING_KEYS)
    settings_set = settings_commands.add_parser("set", help="Change one setting")
    settings_set.add_argument("key", choices=SETTING_KEYS)
    settings_set.add_argument("value")
    settings_unset = settings_commands.add_parser("unset", help="Remove one setting")
    settings_unset.add_argument("key", choices=SETTING_KEYS)

    return parser


# ============================================================================
# Output helpers
# ============================================================================


async def print_stream(events: AsyncIterator[StreamEvent]) -> tuple[str, AiboxError | None]:
    """Echo deltas as they arrive; return the text and the terminal error."""
    parts: list[str] = []
    async for event in events:
        if event.delta:
            print(event.delta, end="", flush=True)
            parts.append(event.delta)
        if event.done:
            print()
            return "".join(parts), event.error
    return "".join(parts), None


def _require_model(box: AiBox, model: str | None) -> str:
    resolved = model or box.default_model()
    if not resolved:
        raise ConfigError("No model given and no default_model configured")
    return resolved


# ============================================================================
# Commands
# ============================================================================


def create_prompt_session() -> PromptSession:
    """Create prompt-toolkit session for REPL input."""
    history_file = Path(REPL_HISTORY_FILE).expanduser()
    history_file.parent.mkdir(parents=True, exist_ok=True)
    return PromptSession(history=FileHistory(str(history_file)))


async def cmd_chat(box: AiBox, args: argparse.Namespace) -> int:
    model = _require_model(box, args.model)
    session = create_prompt_session()
    turns: list[ChatTurn] = []
    print(f"Chatting with {model}{' (knowledge base on)' if args.rag else ''}.")
    print("Type /clear to start over, /exit to quit.")

    while True:
        try:
            user_input = await session.prompt_async("> ")
        except EOFError:
            break

        text = user_input.strip()
        if not text:
            continue
        if text in EXIT_COMMANDS:
            break
        if text == "/clear":
            turns.clear()
            print("Conversation cleared.")
            continue

        turns.append(ChatTurn.user(user_input))
        try:
            reply, error = await print_stream(
                box.chat_stream(model, turns, use_knowledge=args.rag, top_k=args.top_k)
            )
        except AiboxError as e:
            reply, error = "", e

        if error is not None:
            # The failed turn is dropped so the user can retry it.
            turns.pop()
            print(f"Error: {sanitize_error_message(str(error))}")
            continue
        turns.append(ChatTurn.assistant(reply))

    print("Goodbye!")
    return 0


async def cmd_ask(box: AiBox, args: argparse.Namespace) -> int:
    model = _require_model(box, args.model)
    _, error = await print_stream(
        box.chat_stream(
            model,
            [ChatTurn.user(args.prompt)],
            use_knowledge=args.rag,
            top_k=args.top_k,
        )
    )
    if error is not None:
        raise error
    return 0


async def cmd_models(box: AiBox, args: argparse.Namespace) -> int:
    models = await box.list_models(args.provider)
    if not models:
        print("No models available.")
    for model in models:
        print(f"{model.id}  ({model.name})")
    return 0


async def cmd_ingest(box: AiBox, args: argparse.Namespace) -> int:
    path = Path(args.file).expanduser()
    if path.suffix.lower() not in INGESTIBLE_SUFFIXES:
        raise ValueError(
            f"Unsupported file type '{path.suffix}' (supported: {', '.join(INGESTIBLE_SUFFIXES)})"
        )
    raw_text = path.read_text(encoding="utf-8")
    count = await box.ingest_document(raw_text, filename=path.name)
    print(f"Ingested {path.name}: {count} chunks")
    return 0


async def cmd_search(box: AiBox, args: argparse.Namespace) -> int:
    results = await box.retrieve(args.query, args.top_k)
    if not results:
        print("No matches.")
    for position, result in enumerate(results, start=1):
        print(f"{position}. [{result.score:.3f}] {summarize_text(result.chunk.content, limit=100)}")
    return 0


async def cmd_docs(box: AiBox, args: argparse.Namespace) -> int:
    if args.docs_command == "delete":
        removed = box.delete_document(args.document_id)
        print(f"Deleted document {args.document_id} ({removed} chunks)")
        return 0

    documents = box.list_documents()
    if not documents:
        print("No documents.")
    for document in documents:
        print(f"{document.id}  {document.filename or '-'}  {document.chunk_count} chunks  {document.created_at}")
    return 0


async def run_login(
    box: AiBox,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> int:
    """Drive the device flow: show the code, then poll until a final outcome."""
    device: DeviceCode = await box.start_login()
    print(f"Open {device.verification_uri} and enter the code: {device.user_code}")
    print("Waiting for authorization...")

    interval = device.interval
    deadline = clock() + device.expires_in
    while clock() < deadline:
        await sleep(interval)
        result = await box.poll_login(device)
        if result.status == PollStatus.AUTHORIZED:
            print("Logged in to GitHub Copilot.")
            return 0
        if result.status == PollStatus.SLOW_DOWN:
            interval = max(interval + SLOW_DOWN_INCREMENT_SEC, result.interval or 0)
        elif result.status == PollStatus.DENIED:
            print("Error: Authorization was denied.")
            return 1
        elif result.status == PollStatus.EXPIRED:
            break

    print("Error: The device code expired; run login again.")
    return 1


async def cmd_login(box: AiBox, args: argparse.Namespace) -> int:
    return await run_login(box)


async def cmd_logout(box: AiBox, args: argparse.Namespace) -> int:
    box.logout()
    print("Logged out of GitHub Copilot.")
    return 0


async def cmd_settings(box: AiBox, args: argparse.Namespace) -> int:
    store = box.settings
    if args.settings_command == "list":
        values = masked_settings(store)
        if not values:
            print("No settings.")
        for key, value in values.items():
            print(f"{key} = {value}")
    elif args.settings_command == "get":
        value = store.get(args.key)
        if value is None:
            print(f"{args.key} is not set")
        else:
            print(mask_secret(value) if args.key in SECRET_SETTING_KEYS else value)
    elif args.settings_command == "set":
        validate_setting_key(args.key)
        store.set(args.key, args.value)
        print(f"{args.key} updated")
    else:
        store.delete(args.key)
        print(f"{args.key} removed")
    return 0


COMMAND_HANDLERS: dict[str, Callable[[AiBox, argparse.Namespace], Awaitable[int]]] = {
    "chat": cmd_chat,
    "ask": cmd_ask,
    "models": cmd_models,
    "ingest": cmd_ingest,
    "search": cmd_search,
    "docs": cmd_docs,
    "login": cmd_login,
    "logout": cmd_logout,
    "settings": cmd_settings,
}


async def run_command(args: argparse.Namespace, config: AppConfig) -> int:
    async with AiBox.from_config(config) as box:
        return await COMMAND_HANDLERS[args.command](box, args)


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the aibox CLI."""
    args = build_parser().parse_args(argv)
    app_started = time.perf_counter()

    try:
        config = load_config(args.config)
        effective_log_path = args.log or build_run_log_path(config.logs_dir)
        setup_logging(effective_log_path)

        log_event(
            "app_start",
            level=logging.INFO,
            command=args.command,
            config_file=args.config,
            log_file=effective_log_path,
            database_file=config.database_file,
        )

        exit_code = asyncio.run(run_command(args, config))
        log_event(
            "app_stop",
            level=logging.INFO,
            reason="normal",
            uptime_ms=round((time.perf_counter() - app_started) * 1000, 1),
        )
        sys.exit(exit_code)

    except KeyboardInterrupt:
        log_event(
            "app_stop",
            level=logging.INFO,
            reason="keyboard_interrupt",
            uptime_ms=round((time.perf_counter() - app_started) * 1000, 1),
        )
        print("\nInterrupted")
        sys.exit(0)
    except Exception as e:
        print(f"Error: {sanitize_error_message(str(e))}")
        log_event(
            "app_stop",
            level=logging.ERROR,
            reason="fatal_error",
            error_type=type(e).__name__,
            error=sanitize_error_message(str(e)),
            uptime_ms=round((time.perf_counter() - app_started) * 1000, 1),
        )
        sys.exit(1)


if __name__ == "__main__":
    main()
