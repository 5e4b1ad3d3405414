from typing import Any, Dict, Iterable, List, Type

from .base_condition import BaseCondition
from .alarm_condition import AlarmCondition
from .validate_condition import ValidateCondition


class ConditionFactory:
    """Factory for building condition instances from stored rows"""

    _condition_registry: Dict[str, Type[BaseCondition]] = {
        "alarm": AlarmCondition,
        "validate": ValidateCondition,
    }

    @classmethod
    def register_condition(cls, condition_type: str, condition_class: Type[BaseCondition]):
        """Register new condition type"""
        cls._condition_registry[condition_type] = condition_class

    @classmethod
    def create(cls, condition_type: str, row: Dict[str, Any]) -> BaseCondition:
        condition_class = cls._condition_registry.get(condition_type)
        if condition_class is None:
            raise ValueError(f"No condition registered for type: {condition_type}")
        return condition_class.from_row(row)

    @classmethod
    def create_conditions(cls, condition_type: str, rows: Iterable[Any]) -> List[BaseCondition]:
        """Build a list of conditions, passing through already-built instances."""
        conditions = []
        for row in rows or []:
            if isinstance(row, BaseCondition):
                conditions.append(row)
            else:
                conditions.append(cls.create(condition_type, row))
        return conditions

    @classmethod
    def get_available_conditions(cls) -> List[str]:
        return list(cls._condition_registry.keys())
