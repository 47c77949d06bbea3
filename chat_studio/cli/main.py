"""Chat Studio terminal entry point."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import shlex
import signal
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from chat_studio.chat.errors import ChatStudioError
from chat_studio.chat.models import ChatSettings
from chat_studio.chat.persistence import SqlitePersistence
from chat_studio.chat.service import ChatService
from chat_studio.config import settings
from chat_studio.llm.client import OllamaClient
from chat_studio.llm.models import ModelCatalog, friendly
from chat_studio.llm.prompt import ApiMode
from chat_studio.notifications import ConsoleChannel, NotificationRouter

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from chat_studio.chat.models import Message

logger = logging.getLogger(__name__)

HELP = """\
Commands:
  /new [name]        start a new chat
  /list              list chats
  /switch <n>        switch to chat number n
  /rename <name>     rename the current chat
  /delete [n]        delete chat n (default: current)
  /clear             remove all messages in the current chat
  /regen             regenerate the last reply
  /model [name]      show or set the model for this chat
  /models            list models known to the server
  /system [prompt]   show or set this chat's prompt ("-" resets)
  /set <key> <val>   change a setting (memory_window, enable_sound, ...)
  /settings          show settings
  /help              show this help
  /quit              exit
Press Ctrl-C while a reply is streaming to stop it."""


class Shell:
    """Line-oriented REPL over a ChatService."""

    def __init__(self, service: ChatService) -> None:
        self.service = service
        self.running = True

    @property
    def current_id(self) -> str:
        return self.service.store.active_id

    def print(self, text: str = "") -> None:
        sys.stdout.write(text + "\n")
        sys.stdout.flush()

    async def on_delta(self, message: Message, text: str) -> None:
        sys.stdout.write(text)
        sys.stdout.flush()

    def conversation_by_number(self, arg: str) -> str:
        conversations = self.service.store.list()
        try:
            return conversations[int(arg) - 1].id
        except (ValueError, IndexError):
            msg = f"No chat numbered '{arg}'. Use /list."
            raise ChatStudioError(msg) from None

    async def chat(self, text: str) -> None:
        await self.stream(lambda cid: self.service.send_message(cid, text))

    async def stream(self, start: Callable[[str], Awaitable[object]]) -> None:
        """Run a generation with Ctrl-C mapped to cancel."""
        conversation_id = self.current_id
        unsubscribe = self.service.on_delta(conversation_id, self.on_delta)
        loop = asyncio.get_running_loop()
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(signal.SIGINT, self.service.cancel, conversation_id)
        try:
            sys.stdout.write("assistant> ")
            await start(conversation_id)
        finally:
            with contextlib.suppress(NotImplementedError):
                loop.remove_signal_handler(signal.SIGINT)
            unsubscribe()
            self.print()

    async def dispatch(self, line: str) -> None:
        line = line.strip()
        if not line:
            return
        if not line.startswith("/"):
            await self.chat(line)
            return

        name, _, rest = line[1:].partition(" ")
        handler = COMMANDS.get(name.lower())
        if handler is None:
            self.print(f"Unknown command '/{name}'. Type /help.")
            return
        await handler(self, rest.strip())

    async def run(self) -> None:
        conv = self.service.store.active()
        self.print(f"Chat Studio: {conv.name} ({len(conv.messages)} messages). /help for commands.")
        while self.running:
            try:
                line = await asyncio.to_thread(input, "you> ")
            except EOFError:
                break
            try:
                await self.dispatch(line)
            except ChatStudioError as exc:
                self.print(f"Error: {exc}")
            except ValueError as exc:
                self.print(f"Invalid value: {exc}")


# -- Command handlers ----------------------------------------------------------


async def handle_help(shell: Shell, args: str) -> None:
    shell.print(HELP)


async def handle_quit(shell: Shell, args: str) -> None:
    shell.running = False


async def handle_new(shell: Shell, args: str) -> None:
    """Handle /new: create and switch to a fresh chat."""
    conv = await shell.service.new_conversation(args or None)
    shell.print(f"Started '{conv.name}'.")


async def handle_list(shell: Shell, args: str) -> None:
    for n, conv in enumerate(shell.service.store.list(), start=1):
        marker = "*" if conv.id == shell.current_id else " "
        busy = " [generating]" if shell.service.is_generating(conv.id) else ""
        shell.print(f"{marker} {n}. {conv.name} ({len(conv.messages)} messages){busy}")


async def handle_switch(shell: Shell, args: str) -> None:
    conv = shell.service.switch_conversation(shell.conversation_by_number(args))
    shell.print(f"Switched to '{conv.name}'.")
    for message in conv.messages[-6:]:
        shell.print(f"{message.role}> {message.content}")


async def handle_rename(shell: Shell, args: str) -> None:
    await shell.service.rename_conversation(shell.current_id, args)


async def handle_delete(shell: Shell, args: str) -> None:
    target = shell.conversation_by_number(args) if args else shell.current_id
    await shell.service.delete_conversation(target)


async def handle_clear(shell: Shell, args: str) -> None:
    """Handle /clear: drop every message in the current chat."""
    count = await shell.service.clear_conversation(shell.current_id)
    shell.print(f"Cleared {count} messages.")


async def handle_regen(shell: Shell, args: str) -> None:
    """Handle /regen: regenerate the most recent assistant reply."""
    conv = shell.service.store.active()
    last = next((m for m in reversed(conv.messages) if m.role == "assistant"), None)
    if last is None:
        shell.print("Nothing to regenerate.")
        return
    await shell.stream(lambda cid: shell.service.regenerate(cid, last.id))


async def handle_model(shell: Shell, args: str) -> None:
    """Handle /model: view or switch the current chat's model."""
    conv = shell.service.store.active()
    if not args:
        shell.print(f"Model: {friendly(conv.model) or '(server default)'}")
        return
    conv = await shell.service.set_conversation_model(conv.id, args)
    shell.print(f"Model → {friendly(conv.model)}")


async def handle_models(shell: Shell, args: str) -> None:
    models = await shell.service.available_models()
    if not models:
        shell.print("No models found. Is the server running?")
        return
    for model in models:
        shell.print(f"  {friendly(model)}")


async def handle_system(shell: Shell, args: str) -> None:
    conv = shell.service.store.active()
    if not args:
        shell.print(conv.effective_system_prompt(shell.service.settings) or "(none)")
        return
    await shell.service.set_system_prompt(conv.id, None if args == "-" else args)


async def handle_settings(shell: Shell, args: str) -> None:
    for key, value in shell.service.settings.model_dump().items():
        shell.print(f"  {key} = {value!r}")


async def handle_set(shell: Shell, args: str) -> None:
    parts = shlex.split(args)
    if len(parts) < 2:
        shell.print("Usage: /set <key> <value>")
        return
    key, value = parts[0], " ".join(parts[1:])
    if key not in ChatSettings.model_fields:
        shell.print(f"Unknown setting '{key}'.")
        return
    await shell.service.update_settings(**{key: value})


COMMANDS: dict[str, Callable[[Shell, str], Awaitable[None]]] = {
    "help": handle_help,
    "quit": handle_quit,
    "exit": handle_quit,
    "new": handle_new,
    "list": handle_list,
    "switch": handle_switch,
    "rename": handle_rename,
    "delete": handle_delete,
    "clear": handle_clear,
    "regen": handle_regen,
    "model": handle_model,
    "models": handle_models,
    "system": handle_system,
    "settings": handle_settings,
    "set": handle_set,
}


# -- Entry point ---------------------------------------------------------------


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Chat with a local LLM server.")
    parser.add_argument("--url", default=settings.ollama_url, help="inference server URL")
    parser.add_argument(
        "--mode",
        default=settings.api_mode,
        choices=[m.value for m in ApiMode],
        help="request shape",
    )
    parser.add_argument("--db", type=Path, default=settings.database_path, help="state database")
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> None:
    NotificationRouter.get().register_channel(ConsoleChannel())
    client = OllamaClient(args.url, mode=args.mode)
    service = ChatService(
        SqlitePersistence(args.db),
        client=client,
        catalog=ModelCatalog(client),
    )
    await service.start()
    await Shell(service).run()


def main(argv: list[str] | None = None) -> None:
    """Start the interactive chat."""
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=getattr(logging, settings.log_level),
    )
    args = _parse_args(argv)
    logger.info("Connecting to %s (%s)", args.url, args.mode)
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(_run(args))


if __name__ == "__main__":
    main()
