from dataclasses import dataclass
from typing import Any, Dict

from .base_condition import BaseCondition
from .expression import Expression


@dataclass
class ValidateCondition(BaseCondition):
    """Condition a reading must satisfy to be considered valid."""

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ValidateCondition":
        return cls(
            id          = row.get("id"),
            name        = row.get("name"),
            code        = row.get("code"),
            description = row.get("description"),
            expression  = Expression.from_row(row.get("expression")),
        )

    def to_row(self) -> Dict[str, Any]:
        return self._base_row()
