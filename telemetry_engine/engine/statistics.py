from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, Optional


def derive_status(running: bool, connected: bool) -> str:
    if running and connected:
        return "RUNNING"
    if running:
        return "DISCONNECTED"
    return "STOPPED"


@dataclass(frozen=True)
class EngineStatistics:
    """Point-in-time snapshot of one runtime's counters."""
    datasource_id: str
    datasource_name: Optional[str]
    device_count: int
    running: bool
    connected: bool
    last_poll_time: Optional[datetime]
    last_successful_poll_time: Optional[datetime]
    poll_count: int
    error_count: int
    reading_count: int

    @property
    def status(self) -> str:
        return derive_status(self.running, self.connected)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "datasourceId": self.datasource_id,
            "datasourceName": self.datasource_name,
            "deviceCount": self.device_count,
            "running": self.running,
            "connected": self.connected,
            "lastPollTime": self.last_poll_time.isoformat() if self.last_poll_time else None,
            "lastSuccessfulPollTime": (self.last_successful_poll_time.isoformat()
                                       if self.last_successful_poll_time else None),
            "pollCount": self.poll_count,
            "errorCount": self.error_count,
            "readingCount": self.reading_count,
            "status": self.status,
        }


def aggregate(snapshots: Iterable[EngineStatistics]) -> Dict[str, Any]:
    """Fleet totals over a set of snapshots."""
    snapshots = list(snapshots)
    return {
        "engineCount": len(snapshots),
        "runningCount": sum(1 for s in snapshots if s.running),
        "connectedCount": sum(1 for s in snapshots if s.running and s.connected),
        "deviceCount": sum(s.device_count for s in snapshots),
        "totalPolls": sum(s.poll_count for s in snapshots),
        "totalErrors": sum(s.error_count for s in snapshots),
        "totalReadings": sum(s.reading_count for s in snapshots),
    }
