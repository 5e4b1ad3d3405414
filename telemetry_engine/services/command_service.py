from datetime import datetime
from typing import List, Optional
import logging

from ..core.exceptions import CommandStateError
from ..models import CommandStatus, DeviceCommand, utcnow
from .repositories import CommandStore


class DeviceCommandService:
    """Lifecycle bookkeeping of device commands over a command store."""

    def __init__(self, command_store: CommandStore):
        self.store = command_store
        self.log = logging.getLogger(self.__class__.__name__)

    # ---------- queries --------------------------------------------------- #
    def get_all_commands(self) -> List[DeviceCommand]:
        return self.store.list_all()

    def get_command_by_id(self, command_id: str) -> Optional[DeviceCommand]:
        return self.store.get_by_id(command_id)

    def get_commands_by_device_id(self, device_id: str) -> List[DeviceCommand]:
        return [c for c in self.store.list_all() if c.device_id == device_id]

    def get_commands_by_datasource_id(self, datasource_id: str) -> List[DeviceCommand]:
        return [c for c in self.store.list_all() if c.datasource_id == datasource_id]

    def get_commands_by_status(self, status: CommandStatus) -> List[DeviceCommand]:
        return [c for c in self.store.list_all() if c.status == status]

    def get_old_commands(self, cutoff: datetime) -> List[DeviceCommand]:
        return [c for c in self.store.list_all() if c.created_at and c.created_at < cutoff]

    # ---------- mutations ------------------------------------------------- #
    def create_command(self, command: DeviceCommand) -> DeviceCommand:
        command.created_at = utcnow()
        command.status = CommandStatus.PENDING
        return self.store.create(command)

    def update_command_status(self, command_id: str, status: CommandStatus) -> Optional[DeviceCommand]:
        """Move a command forward; returns None when the command is unknown.

        Raises CommandStateError on a backwards move or when leaving a
        terminal status.
        """
        command = self.store.get_by_id(command_id)
        if command is None:
            return None
        self._transition(command, status)
        return self.store.update(command_id, command)

    def update_command_result(self, command_id: str, status: CommandStatus,
                              result_message: Optional[str]) -> Optional[DeviceCommand]:
        command = self.store.get_by_id(command_id)
        if command is None:
            return None
        self._transition(command, status)
        command.result_message = result_message
        command.completed_at = command.completed_at or utcnow()
        return self.store.update(command_id, command)

    def _transition(self, command: DeviceCommand, status: CommandStatus) -> None:
        current = command.status or CommandStatus.PENDING
        if not current.can_transition_to(status):
            raise CommandStateError(
                f"Command {command.id}: illegal transition {current.value} -> {status.value}")
        if status == current:
            return

        command.status = status
        now = utcnow()
        if status == CommandStatus.SENT:
            command.sent_at = now
        elif status.terminal:
            command.completed_at = now
        self.log.debug(f"Command {command.id}: {current.value} -> {status.value}")
