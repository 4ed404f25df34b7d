"""
GptRelayBot - per-message orchestration.

received -> routed -> authorized -> executed -> exactly one reply.
Nothing in here knows about Telegram; the bot passes in `send` (and
optionally `typing`) callables.
"""
import asyncio, logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from allowlist import AllowListStore, StoreWriteError
from commands import (
    Ask, AddUser, RemoveUser, ListUsers, Help, Decision,
    authorize, help_text, parse_command,
)
from completion import CompletionBridge, CompletionError

logger = logging.getLogger("gptrelaybot")

ACCESS_DENIED_TEXT = "⛔️ Access denied"
COMPLETION_ERROR_TEXT = "Could not reach the assistant. Please try again later."
STORE_ERROR_TEXT = "Could not save the user list. Nothing was changed."
INTERNAL_ERROR_TEXT = "Something went wrong while handling your message."
EMPTY_PROMPT_TEXT = "Send me some text to ask the assistant. Usage: /ask <text>"
NO_USERS_TEXT = "No allowed users yet. Add one with /adduser <username>"


@dataclass(frozen=True)
class InboundMessage:
    chat_id: int
    sender: Optional[str]
    text: Optional[str]


async def keep_typing(typing, chat_id, interval=4.0):
    try:
        while True:
            await typing(chat_id)
            await asyncio.sleep(interval)
    except asyncio.CancelledError: pass
    except Exception as e:
        logger.debug("Typing indicator failed for chat %s: %s", chat_id, e)


class Dispatcher:
    """Turns one inbound message into one outbound reply."""

    def __init__(self, store: AllowListStore, bridge: CompletionBridge, admin: str,
                 send: Callable[[int, str], Awaitable[None]],
                 typing: Optional[Callable[[int], Awaitable[None]]] = None,
                 bot_username: str = ""):
        self.store = store
        self.bridge = bridge
        self.admin = admin
        self._send = send
        self._typing = typing
        self.bot_username = bot_username

    async def handle(self, message: InboundMessage):
        """Compute the reply and send it once. Send failures are logged and re-raised."""
        reply = await self.reply_for(message)
        try:
            await self._send(message.chat_id, reply)
        except Exception as e:
            logger.error("Failed to send reply to chat %s: %s", message.chat_id, e)
            raise

    async def reply_for(self, message: InboundMessage) -> str:
        command = parse_command(message.text, self.bot_username)
        decision = authorize(command, message.sender, self.admin, self.store)
        if decision is Decision.DENIED:
            logger.info("Denied %s from %s", type(command).__name__, message.sender or "<anonymous>")
            return ACCESS_DENIED_TEXT
        try:
            return await self.execute(command, message)
        except Exception as e:
            logger.error("Error handling %s from %s: %s", type(command).__name__,
                         message.sender, e, exc_info=True)
            return INTERNAL_ERROR_TEXT

    async def execute(self, command, message: InboundMessage) -> str:
        if isinstance(command, Help):
            return help_text()
        if isinstance(command, ListUsers):
            return self._list_users()
        if isinstance(command, (AddUser, RemoveUser)):
            return self._mutate(command)
        if isinstance(command, Ask):
            return await self._ask(command.text, message)
        raise TypeError("Unknown command: %r" % (command,))

    def _list_users(self) -> str:
        users = self.store.list()
        if not users:
            return NO_USERS_TEXT
        return "Allowed users (%d):\n%s" % (len(users), "\n".join("• %s" % u for u in users))

    def _mutate(self, command) -> str:
        adding = isinstance(command, AddUser)
        name = command.identity
        if not name:
            return "Usage: /%s <username>" % ("adduser" if adding else "removeuser")
        try:
            if adding:
                changed = self.store.add(name)
            else:
                changed = self.store.remove(name)
        except StoreWriteError:
            return STORE_ERROR_TEXT
        if adding:
            return ("✅ Added %s" % name) if changed else ("%s is already allowed" % name)
        return ("✅ Removed %s" % name) if changed else ("%s is not in the list" % name)

    async def _ask(self, prompt: str, message: InboundMessage) -> str:
        if not prompt.strip():
            return EMPTY_PROMPT_TEXT
        logger.info("User %s: %s", message.sender, prompt[:100])
        typing_task = None
        if self._typing:
            typing_task = asyncio.create_task(keep_typing(self._typing, message.chat_id))
        try:
            reply = await self.bridge.complete(prompt)
        except CompletionError as e:
            logger.warning("Completion failed for %s: %s: %s", message.sender, type(e).__name__, e)
            return COMPLETION_ERROR_TEXT
        finally:
            if typing_task:
                typing_task.cancel()
                try: await typing_task
                except asyncio.CancelledError: pass
        logger.info("Reply for %s (%d chars)", message.sender, len(reply))
        return reply
