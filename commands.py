"""
GptRelayBot - command routing and authorization.

Every inbound text maps to exactly one Command: a recognised `/keyword`
becomes its structured command, anything else (including unknown
`/keywords`) becomes an implicit Ask carrying the whole message.
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

SIGIL = "/"


@dataclass(frozen=True)
class Ask:
    text: str


@dataclass(frozen=True)
class AddUser:
    identity: str


@dataclass(frozen=True)
class RemoveUser:
    identity: str


@dataclass(frozen=True)
class ListUsers:
    pass


@dataclass(frozen=True)
class Help:
    pass


Command = Union[Ask, AddUser, RemoveUser, ListUsers, Help]

ADMIN_COMMANDS = (AddUser, RemoveUser, ListUsers)

# keyword -> (description, argument hint)
COMMAND_DESCRIPTIONS = {
    "ask": ("Ask the assistant something", "<text>"),
    "adduser": ("Allow a user (admin only)", "<username>"),
    "removeuser": ("Revoke a user (admin only)", "<username>"),
    "listusers": ("Show allowed users (admin only)", ""),
    "help": ("Show this help", ""),
}

# /keyword, optional @BotName, then the rest after a whitespace run
_COMMAND_RE = re.compile(r"^/([A-Za-z]+)(?:@(\w+))?(?:\s+(.*))?$", re.DOTALL)


def _identity_arg(arg: str) -> str:
    return arg[1:] if arg.startswith("@") else arg


def match_command(text: Optional[str], bot_username: str = "") -> Optional[Command]:
    """Stage one: parse `text` as a known command, or return None."""
    if not text or not text.startswith(SIGIL):
        return None
    m = _COMMAND_RE.match(text.strip())
    if not m:
        return None
    keyword, mention, rest = m.group(1).lower(), m.group(2), (m.group(3) or "").strip()
    if mention and bot_username and mention.lower() != bot_username.lstrip("@").lower():
        return None
    if keyword == "ask":
        return Ask(rest)
    if keyword == "adduser":
        return AddUser(_identity_arg(rest))
    if keyword == "removeuser":
        return RemoveUser(_identity_arg(rest))
    if keyword == "listusers":
        return ListUsers()
    if keyword == "help":
        return Help()
    return None


def parse_command(text: Optional[str], bot_username: str = "") -> Command:
    """Classify `text`: a known command, else free text as an implicit Ask."""
    cmd = match_command(text, bot_username)
    if cmd is not None:
        return cmd
    return Ask(text or "")


def help_text() -> str:
    lines = ["Available commands:"]
    for keyword, (desc, hint) in COMMAND_DESCRIPTIONS.items():
        usage = "/%s %s" % (keyword, hint) if hint else "/%s" % keyword
        lines.append("%s - %s" % (usage, desc))
    lines.append("\nAny other message is sent to the assistant as-is.")
    return "\n".join(lines)


# ─── Authorization ─────────────────────────────────────────────────────────

class Decision(Enum):
    ADMIN = "admin"
    ALLOWED = "allowed"
    DENIED = "denied"


def authorize(command: Command, sender: Optional[str], admin: str, store) -> Decision:
    """Decide what `sender` may do with `command`, from the store's current state."""
    if not sender:
        return Decision.DENIED
    if sender == admin:
        return Decision.ADMIN
    if isinstance(command, Help):
        return Decision.ALLOWED
    if isinstance(command, ADMIN_COMMANDS):
        return Decision.DENIED
    return Decision.ALLOWED if store.contains(sender) else Decision.DENIED
