from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..models.enums import AlarmSeverity
from .base_condition import BaseCondition
from .expression import Expression


@dataclass
class AlarmCondition(BaseCondition):
    """Condition that flags a reading as abnormal when it evaluates true."""
    severity: Optional[AlarmSeverity] = None

    @property
    def message(self) -> str:
        return self.description or self.name or self.code or "Alarm condition met"

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "AlarmCondition":
        return cls(
            id          = row.get("id"),
            name        = row.get("name"),
            code        = row.get("code"),
            description = row.get("description"),
            expression  = Expression.from_row(row.get("expression")),
            severity    = AlarmSeverity.parse(row.get("severity")),
        )

    def to_row(self) -> Dict[str, Any]:
        row = self._base_row()
        row["severity"] = self.severity.name if self.severity else None
        return row
