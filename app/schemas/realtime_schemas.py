from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field


class ChangeEventType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChangeEvent(BaseModel):
    """One committed row change, as pushed by the change feed"""

    table: str
    event_type: ChangeEventType
    record: Dict[str, Any]
    old_record: Optional[Dict[str, Any]] = None
    commit_timestamp: datetime = Field(default_factory=datetime.now)


class ChangeFilter(BaseModel):
    """
    Which rows of a table a subscription receives.

    A row matches when its event type is listed and, if `columns` is set,
    any of those columns holds one of `values` (`column=eq.x` or
    `column=in.(x,y)` in change-feed terms).
    """

    model_config = ConfigDict(frozen=True)

    table: str
    columns: Tuple[str, ...] = ()
    values: Tuple[str, ...] = ()
    events: Tuple[ChangeEventType, ...] = (ChangeEventType.INSERT,)

    @property
    def channel(self) -> str:
        return self.table

    def matches(self, event: ChangeEvent) -> bool:
        if event.table != self.table or event.event_type not in self.events:
            return False
        if not self.columns:
            return True
        wanted = set(self.values)
        return any(
            event.record.get(column) is not None
            and str(event.record.get(column)) in wanted
            for column in self.columns
        )
