"""
Chat transport for the Kanji Quiz Bot.
Sends messages to Discord, retrying server-side failures.
"""
import asyncio
import io
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import discord

from .session_registry import presence_text

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
RETRY_DELAY = 1.0

EMBED_COLOR = 0xFADE40


def is_server_error(error: Exception) -> bool:
    return isinstance(error, discord.HTTPException) and getattr(error, "status", 0) >= 500


async def retry_on_server_error(
    operation: Callable[[], Awaitable[Any]],
    description: str,
    attempts: int = MAX_ATTEMPTS,
    delay: float = RETRY_DELAY,
) -> Optional[Any]:
    """
    Run a Discord API call, retrying on 5xx responses with a fixed delay.

    Other errors, including non-HTTP failures, are not retried. A final failure
    is logged and None returned.

    Args:
        operation: Zero-argument factory returning a fresh awaitable per attempt
        description: What is being attempted, for the log
        attempts: Maximum number of attempts
        delay: Seconds to wait between attempts
    """
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except discord.HTTPException as e:
            if is_server_error(e) and attempt < attempts:
                logger.warning(
                    f"Discord server error during {description} (attempt {attempt}/{attempts}), "
                    f"retrying in {delay}s: {e}"
                )
                await asyncio.sleep(delay)
                continue
            logger.error(f"Could not {description}: {e}")
            return None
        except Exception as e:
            # Connection resets, timeouts and client errors are not retried
            logger.error(f"Could not {description}: {type(e).__name__}: {e}")
            return None
    return None


class ChatTransport:
    """Interface the quiz engine uses to talk to the chat service."""

    async def send_text(self, channel_id: int, text: str):
        raise NotImplementedError

    async def send_image(self, channel_id: int, data: bytes, filename: str = "word.png"):
        raise NotImplementedError

    async def send_rich_card(self, channel_id: int, card: Dict[str, Any]):
        raise NotImplementedError

    async def edit_text(self, channel_id: int, message_id: int, text: str):
        raise NotImplementedError


def build_embed(card: Dict[str, Any]) -> discord.Embed:
    """
    Build a Discord embed from a plain dictionary.

    Keys: title, description, color, fields (list of (name, value, inline)), footer.
    """
    embed = discord.Embed(
        title=card.get("title"),
        description=card.get("description"),
        color=card.get("color", EMBED_COLOR),
    )
    for name, value, inline in card.get("fields", []):
        embed.add_field(name=name, value=value, inline=inline)
    if card.get("footer"):
        embed.set_footer(text=card["footer"])
    return embed


class DiscordTransport(ChatTransport):
    """ChatTransport backed by a discord.py client."""

    def __init__(self, client: discord.Client, retry_delay: float = RETRY_DELAY):
        self.client = client
        self.retry_delay = retry_delay

    async def _channel(self, channel_id: int):
        channel = self.client.get_channel(channel_id)
        if channel is None:
            channel = await self.client.fetch_channel(channel_id)
        return channel

    async def send_text(self, channel_id: int, text: str):
        async def operation():
            channel = await self._channel(channel_id)
            return await channel.send(text)

        return await retry_on_server_error(operation, "send message", delay=self.retry_delay)

    async def send_image(self, channel_id: int, data: bytes, filename: str = "word.png"):
        async def operation():
            channel = await self._channel(channel_id)
            return await channel.send(file=discord.File(io.BytesIO(data), filename=filename))

        return await retry_on_server_error(operation, "send image", delay=self.retry_delay)

    async def send_rich_card(self, channel_id: int, card: Dict[str, Any]):
        async def operation():
            channel = await self._channel(channel_id)
            return await channel.send(embed=build_embed(card))

        return await retry_on_server_error(operation, "send embed", delay=self.retry_delay)

    async def edit_text(self, channel_id: int, message_id: int, text: str):
        async def operation():
            channel = await self._channel(channel_id)
            return await channel.get_partial_message(message_id).edit(content=text)

        return await retry_on_server_error(operation, "edit message", delay=self.retry_delay)

    async def set_presence(self, active_count: int) -> None:
        """Show the number of running quizzes as the bot's activity."""
        text = presence_text(active_count)
        activity = discord.Game(name=text) if text else None
        await self.client.change_presence(activity=activity)
