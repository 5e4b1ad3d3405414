# telemetry_engine/conditions/base_condition.py
from abc import ABC
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .expression import Expression


@dataclass
class BaseCondition(ABC):
    """Fields and evaluation shared by alarm and validation conditions."""
    id: Optional[str] = None
    name: Optional[str] = None
    code: Optional[str] = None
    description: Optional[str] = None
    expression: Optional[Expression] = None

    def evaluate(self, variables: Dict[str, Any]) -> bool:
        """Evaluate the bound expression; a missing expression never matches."""
        return self.expression is not None and self.expression.evaluate(variables)

    def evaluate_reading(self, reading: Any) -> bool:
        if reading is None or self.expression is None:
            return False
        return self.expression.evaluate(reading_variables(reading))

    def _base_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "description": self.description,
            "expression": self.expression.to_row() if self.expression else None,
        }


def reading_variables(reading: Any) -> Dict[str, Any]:
    """Variable context every condition sees for a reading."""
    return {
        "value": reading.value,
        "numericValue": reading.numeric_value,
        "reading": reading,
    }
