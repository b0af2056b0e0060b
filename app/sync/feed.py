import asyncio
import inspect
from typing import Awaitable, Callable, Dict, List, Optional, Tuple, Union

import redis.asyncio as aioredis
from redis.asyncio.client import PubSub
from redis.exceptions import RedisError
from pydantic import ValidationError

from app.config.config import settings
from app.schemas.realtime_schemas import ChangeEvent, ChangeFilter
from app.utils.exceptions import SubscriptionError
from app.utils.logger_config import setup_logger

logger = setup_logger()

EventCallback = Callable[[ChangeEvent], Union[None, Awaitable[None]]]
ErrorCallback = Callable[[Exception], Union[None, Awaitable[None]]]


async def invoke(callback: Callable, *args) -> None:
    """Call a sync or async callback"""
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class FeedSubscription:
    """Handle for one (table, filter) subscription. Closing it stops delivery."""

    def __init__(
        self,
        feed: "BaseChangeFeed",
        change_filter: ChangeFilter,
        callback: EventCallback,
        on_error: Optional[ErrorCallback] = None,
    ):
        self.feed = feed
        self.change_filter = change_filter
        self.callback = callback
        self.on_error = on_error
        self.closed = False

    async def close(self):
        if self.closed:
            return
        self.closed = True
        await self.feed._remove(self)


class BaseChangeFeed:
    async def subscribe(
        self,
        change_filter: ChangeFilter,
        callback: EventCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> FeedSubscription:
        raise NotImplementedError

    async def publish(self, event: ChangeEvent) -> None:
        raise NotImplementedError

    async def _remove(self, subscription: FeedSubscription) -> None:
        raise NotImplementedError

    async def _deliver(self, subscription: FeedSubscription, event: ChangeEvent):
        if subscription.closed or not subscription.change_filter.matches(event):
            return
        try:
            await invoke(subscription.callback, event)
        except Exception as e:
            logger.error(
                f"Error delivering {event.event_type.value} on {event.table}: {e}"
            )

    async def close(self) -> None:
        pass


class InProcessChangeFeed(BaseChangeFeed):
    """In-memory change broker. Filters are applied before dispatch."""

    def __init__(self):
        # Subscriptions by table, in subscribe order
        self.subscriptions: Dict[str, List[FeedSubscription]] = {}

    async def subscribe(
        self,
        change_filter: ChangeFilter,
        callback: EventCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> FeedSubscription:
        subscription = FeedSubscription(self, change_filter, callback, on_error)
        self.subscriptions.setdefault(change_filter.channel, []).append(subscription)
        logger.info(
            f"Subscribed to {change_filter.channel}. "
            f"Total {change_filter.channel} subscriptions: "
            f"{len(self.subscriptions[change_filter.channel])}"
        )
        return subscription

    async def _remove(self, subscription: FeedSubscription) -> None:
        channel = subscription.change_filter.channel
        subscriptions = self.subscriptions.get(channel, [])
        if subscription in subscriptions:
            subscriptions.remove(subscription)
        if not subscriptions:
            self.subscriptions.pop(channel, None)
        logger.info(
            f"Unsubscribed from {channel}. Total {channel} subscriptions: "
            f"{len(subscriptions)}"
        )

    async def publish(self, event: ChangeEvent) -> None:
        # Snapshot: callbacks may subscribe or unsubscribe while we iterate
        for subscription in list(self.subscriptions.get(event.table, [])):
            await self._deliver(subscription, event)

    async def fail(self, table: str, error: Exception) -> None:
        """Report a transport failure to every subscription on a table"""
        for subscription in list(self.subscriptions.get(table, [])):
            if subscription.on_error and not subscription.closed:
                await invoke(subscription.on_error, error)

    def subscription_count(self, table: Optional[str] = None) -> int:
        if table is not None:
            return len(self.subscriptions.get(table, []))
        return sum(len(subs) for subs in self.subscriptions.values())

    async def close(self) -> None:
        for subscriptions in list(self.subscriptions.values()):
            for subscription in list(subscriptions):
                await subscription.close()


class RedisChangeFeed(BaseChangeFeed):
    """
    Change feed over Redis pub/sub.

    One channel per table (`<prefix>:<table>`); events travel as JSON and
    each subscriber applies its own filter.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        prefix: Optional[str] = None,
        client: Optional[aioredis.Redis] = None,
    ):
        self.prefix = prefix or settings.CHANGE_FEED_PREFIX
        self._redis = client or aioredis.from_url(
            url or settings.REDIS_URL, decode_responses=True
        )
        self._readers: Dict[FeedSubscription, Tuple[PubSub, asyncio.Task]] = {}

    def channel_for(self, table: str) -> str:
        return f"{self.prefix}:{table}"

    async def publish(self, event: ChangeEvent) -> None:
        try:
            await self._redis.publish(
                self.channel_for(event.table), event.model_dump_json()
            )
        except RedisError as e:
            logger.error(f"Failed to publish {event.table} change: {e}")
            raise SubscriptionError(f"Failed to publish change: {e}") from e

    async def subscribe(
        self,
        change_filter: ChangeFilter,
        callback: EventCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> FeedSubscription:
        channel = self.channel_for(change_filter.channel)
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(channel)
        except RedisError as e:
            await pubsub.aclose()
            raise SubscriptionError(f"Could not subscribe to {channel}: {e}") from e

        subscription = FeedSubscription(self, change_filter, callback, on_error)
        task = asyncio.create_task(self._read(subscription, pubsub))
        self._readers[subscription] = (pubsub, task)
        logger.info(f"Subscribed to {channel}")
        return subscription

    async def _read(self, subscription: FeedSubscription, pubsub: PubSub):
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                await self.dispatch(subscription, message["data"])
        except RedisError as e:
            logger.error(
                f"Change feed reader for {subscription.change_filter.channel} stopped: {e}"
            )
            if subscription.on_error and not subscription.closed:
                await invoke(subscription.on_error, SubscriptionError(str(e)))

    async def dispatch(self, subscription: FeedSubscription, data: str) -> None:
        try:
            event = ChangeEvent.model_validate_json(data)
        except ValidationError as e:
            logger.warning(f"Dropping malformed change event: {e}")
            return
        await self._deliver(subscription, event)

    async def _remove(self, subscription: FeedSubscription) -> None:
        pubsub, task = self._readers.pop(subscription, (None, None))
        # A callback closing its own subscription runs inside the reader task
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if pubsub is not None:
            try:
                await pubsub.unsubscribe()
            except RedisError as e:
                logger.warning(f"Unsubscribe failed: {e}")
            await pubsub.aclose()
        logger.info(f"Unsubscribed from {subscription.change_filter.channel}")

    async def close(self) -> None:
        for subscription in list(self._readers):
            await subscription.close()
        await self._redis.aclose()
