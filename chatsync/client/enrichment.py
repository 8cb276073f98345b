"""Author profile and reply-context enrichment.

Profiles come from an external lookup (the profile service is not part of
this package). Lookups are cached with a TTL and concurrent lookups for the
same user share one request. Enrichment never fails: on any error the
message is returned unchanged.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from chatsync.shared.models import CamelModel, Message, ReplyContext

logger = logging.getLogger(__name__)


class Profile(CamelModel):
    """Public profile of a user."""

    user_id: str
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    pronouns: Optional[str] = None


ProfileLookup = Callable[[str], Awaitable[Optional[Profile]]]


class ProfileCache:
    """TTL cache with in-flight de-duplication."""

    def __init__(
        self,
        lookup: ProfileLookup,
        ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.lookup = lookup
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Optional[Profile]]] = {}
        self._inflight: Dict[str, asyncio.Future] = {}

    async def get(self, user_id: str) -> Optional[Profile]:
        entry = self._entries.get(user_id)
        if entry is not None and entry[0] > self._clock():
            return entry[1]

        pending = self._inflight.get(user_id)
        if pending is not None:
            return await asyncio.shield(pending)

        future = asyncio.get_running_loop().create_future()
        self._inflight[user_id] = future
        try:
            profile = await self.lookup(user_id)
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so an unawaited failure is not reported
            future.exception()
            raise
        else:
            self._entries[user_id] = (self._clock() + self.ttl, profile)
            future.set_result(profile)
            return profile
        finally:
            self._inflight.pop(user_id, None)

    def invalidate(self, user_id: Optional[str] = None) -> None:
        if user_id is None:
            self._entries.clear()
        else:
            self._entries.pop(user_id, None)


def with_reply_context(message: Message, candidates: Iterable[Message]) -> Message:
    """Attach the quoted parent when it is among ``candidates``."""
    if not message.reply_to_id:
        return message
    for parent in candidates:
        if parent.id == message.reply_to_id:
            return message.model_copy(
                update={
                    "reply_to": ReplyContext(
                        text=parent.text,
                        author_name=parent.author_name,
                        display_name=parent.display_name,
                    )
                }
            )
    return message


def with_profile(message: Message, profile: Optional[Profile]) -> Message:
    if profile is None:
        return message
    return message.model_copy(
        update={
            "display_name": profile.display_name,
            "avatar_url": profile.avatar_url,
        }
    )


class MessageEnricher:
    """Adds display names, avatars and reply context to messages."""

    def __init__(self, profiles: ProfileCache):
        self.profiles = profiles

    async def enrich(
        self, message: Message, context: Iterable[Message] = ()
    ) -> Message:
        """Enrich one message; ``context`` is searched for its reply parent."""
        try:
            profile = await self.profiles.get(message.author_id)
        except Exception as e:
            logger.warning(f"Profile lookup failed for {message.author_id}: {e}")
            profile = None

        return with_reply_context(with_profile(message, profile), context)

    async def enrich_many(self, messages: List[Message]) -> List[Message]:
        """Enrich a page; reply parents are resolved within the page."""
        if not messages:
            return messages

        author_ids = list(dict.fromkeys(m.author_id for m in messages))
        results = await asyncio.gather(
            *(self.profiles.get(user_id) for user_id in author_ids),
            return_exceptions=True,
        )
        profiles: Dict[str, Optional[Profile]] = {}
        for user_id, result in zip(author_ids, results):
            if isinstance(result, Exception):
                logger.warning(f"Profile lookup failed for {user_id}: {result}")
                profiles[user_id] = None
            else:
                profiles[user_id] = result

        with_profiles = [with_profile(m, profiles.get(m.author_id)) for m in messages]
        return [with_reply_context(m, with_profiles) for m in with_profiles]
