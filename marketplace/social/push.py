"""
Push Delivery

Best-effort mobile push through the Expo push API:
- Token lookup and validation per recipient
- Chunked HTTP delivery with aiohttp
- Failures are logged and never propagate to the caller

The transport is pluggable so tests and local runs can record or drop
messages instead of calling Expo.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Optional
import uuid

import aiohttp
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.config import get_settings
from marketplace.database.models import User

logger = structlog.get_logger(__name__)

EXPO_TOKEN_PATTERN = re.compile(r"^(ExponentPushToken|ExpoPushToken)\[.+\]$")


@dataclass
class PushMessage:
    """Payload shared by every recipient of one dispatch"""
    title: str
    body: str
    data: Dict[str, Any] = field(default_factory=dict)


def is_valid_push_token(token: Optional[str]) -> bool:
    return bool(token) and EXPO_TOKEN_PATTERN.match(token) is not None


def chunked(items: List[Any], size: int) -> Iterable[List[Any]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


# =============================================================================
# TRANSPORTS
# =============================================================================

class PushTransport(ABC):
    """Delivers one message to a list of device tokens."""

    @abstractmethod
    async def send(self, tokens: List[str], message: PushMessage) -> int:
        """Returns the number of messages accepted by the provider."""
        pass


class NullPushTransport(PushTransport):
    """Used when push is disabled"""

    async def send(self, tokens: List[str], message: PushMessage) -> int:
        logger.debug("Push disabled, dropping message", recipients=len(tokens), title=message.title)
        return 0


class ExpoPushTransport(PushTransport):
    """HTTP transport for https://exp.host push tickets"""

    def __init__(
        self,
        url: str,
        chunk_size: int = 100,
        timeout_seconds: float = 10.0,
        sound: str = "default",
        channel_id: str = "default",
        access_token: Optional[str] = None,
    ):
        self.url = url
        self.chunk_size = chunk_size
        self.timeout_seconds = timeout_seconds
        self.sound = sound
        self.channel_id = channel_id
        self.access_token = access_token

    def build_messages(self, tokens: List[str], message: PushMessage) -> List[Dict[str, Any]]:
        return [
            {
                "to": token,
                "sound": self.sound,
                "title": message.title,
                "body": message.body,
                "data": message.data,
                "priority": "high",
                "channelId": self.channel_id,
            }
            for token in tokens
        ]

    async def send(self, tokens: List[str], message: PushMessage) -> int:
        messages = self.build_messages(tokens, message)
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"

        accepted = 0
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        async with aiohttp.ClientSession(timeout=timeout, headers=headers) as session:
            for chunk in chunked(messages, self.chunk_size):
                try:
                    async with session.post(self.url, json=chunk) as response:
                        if response.status != 200:
                            logger.warning("Expo rejected push chunk", status=response.status, size=len(chunk))
                            continue
                        payload = await response.json()
                except aiohttp.ClientError as e:
                    logger.warning("Expo push request failed", error=str(e), size=len(chunk))
                    continue

                tickets = payload.get("data", []) if isinstance(payload, dict) else []
                errors = [ticket for ticket in tickets if ticket.get("status") == "error"]
                accepted += len(tickets) - len(errors)
                for ticket in errors:
                    logger.warning("Push ticket error", message=ticket.get("message"), details=ticket.get("details"))

        return accepted


@lru_cache()
def get_push_transport() -> PushTransport:
    settings = get_settings()
    if not settings.push.enabled:
        return NullPushTransport()

    token = settings.push.access_token.get_secret_value() if settings.push.access_token else None
    return ExpoPushTransport(
        url=settings.push.expo_url,
        chunk_size=settings.push.chunk_size,
        timeout_seconds=settings.push.timeout_seconds,
        sound=settings.push.sound,
        channel_id=settings.push.channel_id,
        access_token=token,
    )


# =============================================================================
# DISPATCH
# =============================================================================

class PushDispatcher:
    """Resolves recipients to device tokens and hands them to a transport."""

    def __init__(self, session: AsyncSession, transport: Optional[PushTransport] = None):
        self.session = session
        self.transport = transport or get_push_transport()

    async def dispatch(self, user_ids: List[uuid.UUID], message: PushMessage) -> int:
        if not user_ids:
            return 0

        try:
            result = await self.session.execute(
                select(User.expo_push_token).where(
                    User.id.in_(user_ids),
                    User.expo_push_token.is_not(None),
                )
            )
            tokens = [token for token in result.scalars().all() if is_valid_push_token(token)]
            if not tokens:
                return 0

            accepted = await self.transport.send(tokens, message)
            logger.info("Push dispatched", recipients=len(user_ids), tokens=len(tokens), accepted=accepted)
            return accepted
        except Exception as e:
            logger.warning("Push dispatch failed", error=str(e), error_type=type(e).__name__, recipients=len(user_ids))
            return 0
