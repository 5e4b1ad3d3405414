"""Per-datasource runtimes and the fleet manager."""

from .statistics import EngineStatistics, aggregate, derive_status
from .runtime import Runtime
from .engines import Engines

__all__ = [
    'EngineStatistics',
    'aggregate',
    'derive_status',
    'Runtime',
    'Engines',
]
