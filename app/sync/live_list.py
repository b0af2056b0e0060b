from collections import OrderedDict
from typing import Any, Generic, Iterable, Iterator, List, Optional, TypeVar

from pydantic import BaseModel

from app.config.config import settings
from app.utils.logger_config import setup_logger

logger = setup_logger()

Row = TypeVar("Row", bound=BaseModel)


class LiveList(Generic[Row]):
    """
    Ordered in-memory copy of one scope's rows (messages, tracking events,
    notifications), fed by a bulk load plus live single-row events.

    Rows are keyed by primary key, so a row that arrives both live and in
    the bulk fetch is kept once. append() never reorders: live rows land at
    the tail in the order the feed delivers them.
    """

    def __init__(
        self,
        key: str = "id",
        order_by: str = "created_at",
        descending: bool = False,
        max_items: Optional[int] = None,
    ):
        self.key = key
        self.order_by = order_by
        self.descending = descending
        self.max_items = max_items or settings.LIVE_LIST_MAX_ITEMS
        self._rows: "OrderedDict[Any, Row]" = OrderedDict()

    def _key_of(self, row: Row) -> str:
        return str(getattr(row, self.key))

    def _sorted(self, rows: Iterable[Row]) -> List[Row]:
        return sorted(
            rows,
            key=lambda row: getattr(row, self.order_by),
            reverse=self.descending,
        )

    def _evict(self) -> None:
        while len(self._rows) > self.max_items:
            # Oldest rows sit at the head when ascending, at the tail otherwise
            dropped_key, _ = self._rows.popitem(last=self.descending)
            logger.debug(f"Evicted row {dropped_key} from live list")

    def replace(self, rows: Iterable[Row]) -> None:
        """Swap the whole sequence for a fresh bulk fetch"""
        self._rows = OrderedDict((self._key_of(row), row) for row in self._sorted(rows))
        self._evict()

    def merge(self, rows: Iterable[Row]) -> None:
        """
        Union a bulk fetch with whatever already arrived live.

        The fetched copy of a row wins over the live one; the result is
        re-sorted by creation time.
        """
        merged = dict(self._rows)
        for row in rows:
            merged[self._key_of(row)] = row
        self.replace(merged.values())

    def append(self, row: Row) -> bool:
        """
        Insert a live row at the newest end (the head of a descending list).
        Returns False when the key was already known.
        """
        row_key = self._key_of(row)
        if row_key in self._rows:
            self._rows[row_key] = row
            return False
        self._rows[row_key] = row
        if self.descending:
            self._rows.move_to_end(row_key, last=False)
        self._evict()
        return True

    def update(self, row: Row) -> bool:
        """Apply an UPDATE event. Unknown keys are ignored."""
        row_key = self._key_of(row)
        if row_key not in self._rows:
            return False
        self._rows[row_key] = row
        return True

    def remove(self, row_key: Any) -> Optional[Row]:
        return self._rows.pop(str(row_key), None)

    def get(self, row_key: Any) -> Optional[Row]:
        return self._rows.get(str(row_key))

    def clear(self) -> None:
        self._rows.clear()

    @property
    def items(self) -> List[Row]:
        return list(self._rows.values())

    @property
    def last(self) -> Optional[Row]:
        if not self._rows:
            return None
        return next(reversed(self._rows.values()))

    def __contains__(self, row_key: Any) -> bool:
        return str(row_key) in self._rows

    def __len__(self) -> int:
        return len(self._rows)

    def __iter__(self) -> Iterator[Row]:
        return iter(list(self._rows.values()))
