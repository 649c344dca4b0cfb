from .composio import ComposioToolInvoker
from .telegram_client import TelegramClient

__all__ = ["ComposioToolInvoker", "TelegramClient"]
