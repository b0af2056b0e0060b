import asyncio
from typing import Any, Callable, Iterable, Optional, Tuple, Union
from uuid import UUID

from app.schemas.realtime_schemas import ChangeEvent, ChangeEventType, ChangeFilter
from app.sync.client import BackendClient
from app.sync.feed import FeedSubscription, invoke
from app.utils.exceptions import InvalidInput, SubscriptionError
from app.utils.logger_config import setup_logger
from app.utils.middleware import with_retry

logger = setup_logger()

ScopeKey = Union[str, UUID, Iterable[Union[str, UUID]]]


def normalize_scope(scope_key: ScopeKey) -> Tuple[str, ...]:
    """A scope is one id or a set of ids; compare them as a sorted tuple of strings"""
    if scope_key is None:
        return ()
    if isinstance(scope_key, (str, UUID)):
        values = [scope_key]
    else:
        values = list(scope_key)
    return tuple(sorted({str(value) for value in values if value}))


class SubscriptionManager:
    """
    Owns at most one change-feed subscription, bound to the scope that is
    currently on screen (a conversation, an assignment, a user).

    activate(scope) swaps the subscription over to a new scope and is a
    no-op for the scope already active. deactivate() releases it. A
    generation counter, bumped before any await, makes sure no event
    reaching us for a released or superseded scope is handed on.
    """

    def __init__(
        self,
        client: BackendClient,
        table: str,
        columns: Union[str, Tuple[str, ...]],
        on_event: Callable[[ChangeEvent], Any],
        events: Tuple[ChangeEventType, ...] = (ChangeEventType.INSERT,),
        reconnect: bool = True,
    ):
        self.client = client
        self.table = table
        self.columns = (columns,) if isinstance(columns, str) else tuple(columns)
        self.on_event = on_event
        self.events = events
        self.reconnect = reconnect
        self._scope: Tuple[str, ...] = ()
        self._subscription: Optional[FeedSubscription] = None
        self._generation = 0
        self._reconnect_task: Optional[asyncio.Task] = None

    @property
    def scope(self) -> Tuple[str, ...]:
        return self._scope

    @property
    def is_active(self) -> bool:
        return self._subscription is not None and not self._subscription.closed

    @property
    def generation(self) -> int:
        return self._generation

    def filter_for(self, scope: Tuple[str, ...]) -> ChangeFilter:
        return ChangeFilter(
            table=self.table,
            columns=self.columns,
            values=scope,
            events=self.events,
        )

    async def activate(self, scope_key: ScopeKey) -> None:
        scope = normalize_scope(scope_key)
        if not scope:
            raise InvalidInput("A scope key is required to subscribe")
        if scope == self._scope and self.is_active:
            return

        await self.deactivate()
        self._generation += 1
        self._scope = scope
        await self._open(self._generation)

    async def deactivate(self) -> None:
        # Bump first: anything already in flight for the old scope is now stale
        self._generation += 1
        subscription, self._subscription = self._subscription, None
        self._scope = ()
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        self._reconnect_task = None
        if subscription is not None:
            await subscription.close()

    async def _subscribe(self, scope: Tuple[str, ...], generation: int) -> FeedSubscription:
        return await self.client.subscribe(
            self.filter_for(scope),
            lambda event: self._deliver(event, generation),
            on_error=lambda error: self._on_feed_error(error, generation),
        )

    async def _open(self, generation: int) -> None:
        if generation != self._generation:
            return
        scope = self._scope
        subscribe = self._subscribe
        if self.reconnect:
            subscribe = with_retry(retry_on=(SubscriptionError,))(self._subscribe)

        try:
            subscription = await subscribe(scope, generation)
        except SubscriptionError as e:
            logger.error(f"Could not subscribe to {self.table} {scope}: {e}")
            return

        if generation != self._generation:
            # Scope changed while we were connecting
            await subscription.close()
            return
        self._subscription = subscription

    async def _deliver(self, event: ChangeEvent, generation: int) -> None:
        if generation != self._generation:
            logger.debug(f"Dropped stale {event.table} event for an inactive scope")
            return
        await invoke(self.on_event, event)

    async def _on_feed_error(self, error: Exception, generation: int) -> None:
        if generation != self._generation:
            return
        logger.warning(f"Change feed for {self.table} {self._scope} failed: {error}")
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await subscription.close()
        if not self.reconnect:
            return
        # Reopen in the background; the generation guard still applies
        self._reconnect_task = asyncio.create_task(self._open(generation))

    async def __aenter__(self) -> "SubscriptionManager":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.deactivate()
