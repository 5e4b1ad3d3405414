from typing import Dict, List, Optional, Type
import logging

from ..core.exceptions import DriverNotFound
from ..models import DriverDefinition, utcnow
from .base_driver import Driver

# Populated by @register_driver as driver modules are imported
_DRIVER_TABLE: Dict[str, Type[Driver]] = {}


def register_driver(driver_class: Type[Driver]) -> Type[Driver]:
    """Class decorator adding a driver to the registration table."""
    if not driver_class.DRIVER_ID:
        raise ValueError(f"{driver_class.__name__} has no DRIVER_ID")
    _DRIVER_TABLE[driver_class.DRIVER_ID] = driver_class
    return driver_class


def registered_drivers() -> Dict[str, Type[Driver]]:
    return dict(_DRIVER_TABLE)


class DriverRegistry:
    """Known driver classes, their definitions, and a factory for fresh instances."""

    def __init__(self, drivers: Optional[Dict[str, Type[Driver]]] = None):
        self._table = drivers
        self._drivers: Dict[str, Type[Driver]] = {}
        self._definitions: Dict[str, DriverDefinition] = {}
        self.logger = logging.getLogger(self.__class__.__name__)

    def initialize(self, definition_store=None) -> None:
        """Record every registered driver and publish its definition."""
        table = self._table if self._table is not None else registered_drivers()
        for driver_id, driver_class in table.items():
            try:
                definition = driver_class.definition()
                self._drivers[driver_id] = driver_class
                self._definitions[driver_id] = definition
                if definition_store is not None:
                    self._upsert_definition(definition_store, definition)
                self.logger.info(f"Registered driver {driver_id} ({driver_class.__name__})")
            except Exception as e:
                self.logger.error(f"Failed to register driver {driver_id}: {e}", exc_info=True)

        self.logger.info(f"Driver registry initialized with {len(self._drivers)} drivers")

    def _upsert_definition(self, store, definition: DriverDefinition) -> None:
        existing = store.get_by_id(definition.id)
        now = utcnow()
        if existing is None:
            definition.created_at = now
            definition.updated_at = now
            store.create(definition)
            self.logger.info(f"Created driver definition {definition.id}")
            return

        existing.name = definition.name
        existing.description = definition.description
        existing.version = definition.version
        existing.tags = list(definition.tags)
        existing.connection_properties = list(definition.connection_properties)
        existing.signal_properties = list(definition.signal_properties)
        existing.updated_at = now
        store.update(definition.id, existing)
        self.logger.info(f"Updated driver definition {definition.id}")

    def create_driver(self, driver_id: str) -> Driver:
        driver_class = self._drivers.get(driver_id)
        if driver_class is None:
            raise DriverNotFound(driver_id)
        return driver_class()

    def is_available(self, driver_id: str) -> bool:
        return driver_id in self._drivers

    def available_driver_ids(self) -> List[str]:
        return list(self._drivers.keys())

    def get_definition(self, driver_id: str) -> Optional[DriverDefinition]:
        return self._definitions.get(driver_id)
