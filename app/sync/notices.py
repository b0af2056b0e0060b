from typing import Any, Callable, Optional

from app.schemas.notification_schemas import Notice
from app.schemas.status_schema import NotificationLevel
from app.sync.feed import invoke
from app.utils.logger_config import setup_logger

logger = setup_logger()

Notifier = Callable[[Notice], Any]


class NoticeEmitter:
    """Base for components that report action outcomes to the user"""

    def __init__(self, notify: Optional[Notifier] = None):
        self.notify = notify

    async def _notice(
        self,
        level: NotificationLevel,
        title: str,
        description: str,
        link: Optional[str] = None,
    ) -> Notice:
        notice = Notice(level=level, title=title, description=description, link=link)
        if self.notify is None:
            logger.debug(f"No notifier for notice: {title}")
            return notice
        try:
            await invoke(self.notify, notice)
        except Exception as e:
            logger.error(f"Notifier failed for {title!r}: {e}")
        return notice

    async def _success(self, title: str, description: str) -> Notice:
        return await self._notice(NotificationLevel.SUCCESS, title, description)

    async def _warning(self, title: str, description: str) -> Notice:
        return await self._notice(NotificationLevel.WARNING, title, description)

    async def _error(self, title: str, description: str) -> Notice:
        return await self._notice(NotificationLevel.ERROR, title, description)
