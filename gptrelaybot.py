#!/usr/bin/env python3
"""
GptRelayBot - Telegram to OpenAI chat completion relay.
Only the admin and users on the persisted allow-list may talk to the model;
the admin manages the list with /adduser, /removeuser and /listusers.
"""
import os, sys, logging
from pathlib import Path
from dataclasses import dataclass
from telegram import Update, BotCommand
from telegram.ext import Application, MessageHandler, filters
from telegram.constants import ChatAction

from allowlist import ALLOWLIST_FILENAME, AllowListStore, StoreIOError
from commands import COMMAND_DESCRIPTIONS
from completion import CompletionBridge, DEFAULT_API_BASE, DEFAULT_MODEL, DEFAULT_TIMEOUT
from dispatch import Dispatcher, InboundMessage

logging.basicConfig(format="%(asctime)s [gptrelaybot] %(levelname)s: %(message)s", level=logging.INFO)
logger = logging.getLogger("gptrelaybot")
logging.getLogger("httpx").setLevel(logging.WARNING)

VERSION = "1.0.0"
DEFAULT_DATA_DIR = "~/.gptrelaybot"
MAX_MESSAGE_LENGTH = 4096


def mask_key(key: str) -> str:
    """Mask API key for safe logging."""
    if not key or len(key) <= 8:
        return "****"
    return key[:4] + "..." + key[-4:]


# ─── Configuration ──────────────────────────────────────────────────────────

@dataclass
class Config:
    telegram_token: str = ""
    openai_api_key: str = ""
    admin_username: str = ""
    data_dir: str = ""
    model: str = DEFAULT_MODEL
    api_base: str = DEFAULT_API_BASE
    timeout: float = DEFAULT_TIMEOUT
    bot_username: str = ""

    @classmethod
    def from_env(cls):
        cfg = cls()
        cfg.telegram_token = os.environ.get("TELEGRAM_BOT_TOKEN", "")
        cfg.openai_api_key = os.environ.get("OPENAI_API_KEY", "")
        cfg.admin_username = os.environ.get("GPTRELAY_ADMIN", "").strip().lstrip("@")
        cfg.data_dir = os.environ.get("GPTRELAY_DATA_DIR", "") or DEFAULT_DATA_DIR
        cfg.model = os.environ.get("GPTRELAY_MODEL", "") or DEFAULT_MODEL
        cfg.api_base = os.environ.get("GPTRELAY_API_BASE", "") or DEFAULT_API_BASE
        t = os.environ.get("GPTRELAY_TIMEOUT", "")
        cfg.timeout = float(t) if t else DEFAULT_TIMEOUT
        cfg.bot_username = os.environ.get("GPTRELAY_BOT_USERNAME", "").strip().lstrip("@")
        return cfg

    @property
    def allowlist_path(self) -> Path:
        return Path(self.data_dir).expanduser() / ALLOWLIST_FILENAME

    def validate(self):
        errors = []
        if not self.telegram_token: errors.append("TELEGRAM_BOT_TOKEN required")
        if not self.openai_api_key: errors.append("OPENAI_API_KEY required")
        if not self.admin_username: errors.append("GPTRELAY_ADMIN required")
        if self.timeout <= 0: errors.append("GPTRELAY_TIMEOUT must be positive")
        return errors


# ─── Telegram Helpers ───────────────────────────────────────────────────────

def chunk_message(text, max_length=MAX_MESSAGE_LENGTH):
    if len(text) <= max_length: return [text]
    chunks = []
    while text:
        if len(text) <= max_length: chunks.append(text); break
        sp = text.rfind("\n", 0, max_length)
        if sp == -1 or sp < max_length // 2: sp = text.rfind(" ", 0, max_length)
        if sp == -1 or sp < max_length // 2: sp = max_length
        chunks.append(text[:sp]); text = text[sp:].lstrip()
    return chunks


def to_inbound(update: Update) -> InboundMessage:
    msg = update.effective_message
    user = update.effective_user
    return InboundMessage(
        chat_id=msg.chat_id,
        sender=user.username if user and user.username else None,
        text=msg.text,
    )


# ─── Telegram Message Handlers ─────────────────────────────────────────────

async def handle_message(update, context):
    dispatcher = context.bot_data["dispatcher"]
    await dispatcher.handle(to_inbound(update))


async def handle_error(update, context):
    logger.error("Update handling failed: %s", context.error, exc_info=context.error)


# ─── Bot Setup ──────────────────────────────────────────────────────────────

def build_application(config: Config, store: AllowListStore) -> Application:
    bridge = CompletionBridge(config.openai_api_key, model=config.model,
                              api_base=config.api_base, timeout=config.timeout)

    async def post_init(app):
        await app.bot.set_my_commands([
            BotCommand(keyword, desc) for keyword, (desc, _hint) in COMMAND_DESCRIPTIONS.items()
        ])

    async def post_shutdown(app):
        await bridge.close()

    app = (Application.builder().token(config.telegram_token)
           .concurrent_updates(True)
           .post_init(post_init).post_shutdown(post_shutdown).build())

    async def send(chat_id, text):
        for chunk in chunk_message(text):
            await app.bot.send_message(chat_id, chunk)

    async def typing(chat_id):
        await app.bot.send_chat_action(chat_id, ChatAction.TYPING)

    app.bot_data["dispatcher"] = Dispatcher(
        store, bridge, config.admin_username, send,
        typing=typing, bot_username=config.bot_username)

    app.add_handler(MessageHandler(filters.UpdateType.MESSAGE & ~filters.StatusUpdate.ALL, handle_message))
    app.add_error_handler(handle_error)
    return app


def main():
    from dotenv import load_dotenv
    load_dotenv()
    config = Config.from_env()
    errors = config.validate()
    if errors:
        for e in errors: logger.error(e)
        sys.exit(1)

    try:
        store = AllowListStore.load(config.allowlist_path)
    except StoreIOError as e:
        logger.error("%s", e)
        sys.exit(1)

    logger.info("GptRelayBot v%s starting...", VERSION)
    logger.info("  Admin: %s", config.admin_username)
    logger.info("  Allow-list: %s (%d users)", config.allowlist_path, len(store))
    logger.info("  Model: %s @ %s (timeout %.0fs)", config.model, config.api_base, config.timeout)
    logger.info("  API key: %s", mask_key(config.openai_api_key))

    app = build_application(config, store)
    logger.info("GptRelayBot live!")
    app.run_polling(allowed_updates=Update.ALL_TYPES)

if __name__ == "__main__":
    main()
