"""Expression evaluation and alarm/validation conditions."""

from .expression import Expression, compile_expression
from .base_condition import BaseCondition, reading_variables
from .alarm_condition import AlarmCondition
from .validate_condition import ValidateCondition
from .condition_factory import ConditionFactory

__all__ = [
    'Expression',
    'compile_expression',
    'BaseCondition',
    'reading_variables',
    'AlarmCondition',
    'ValidateCondition',
    'ConditionFactory'
]
