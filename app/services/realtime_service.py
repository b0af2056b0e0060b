from typing import Any, Dict, Optional

from pydantic import BaseModel

from app.schemas.realtime_schemas import ChangeEvent, ChangeEventType
from app.sync.feed import BaseChangeFeed
from app.utils.logger_config import setup_logger

logger = setup_logger()


# Helpers services call after commit to push row changes to subscribers
async def publish_change(
    feed: Optional[BaseChangeFeed],
    table: str,
    event_type: ChangeEventType,
    row: BaseModel,
    old_record: Optional[Dict[str, Any]] = None,
):
    """Publish one committed row change. A broker failure never undoes the write."""
    if feed is None:
        return
    event = ChangeEvent(
        table=table,
        event_type=event_type,
        record=row.model_dump(mode="json"),
        old_record=old_record,
    )
    try:
        await feed.publish(event)
    except Exception as e:
        logger.error(f"Failed to publish {event_type.value} on {table}: {e}")


async def publish_insert(feed: Optional[BaseChangeFeed], table: str, row: BaseModel):
    await publish_change(feed, table, ChangeEventType.INSERT, row)


async def publish_update(
    feed: Optional[BaseChangeFeed],
    table: str,
    row: BaseModel,
    old_record: Optional[Dict[str, Any]] = None,
):
    await publish_change(feed, table, ChangeEventType.UPDATE, row, old_record)
