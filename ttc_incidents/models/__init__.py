"""Database models for the TTC incident engine."""

# Import all models to register them with SQLAlchemy metadata
from ttc_incidents.models.accuracy import AlertAccuracyLog, AlertAccuracyReport
from ttc_incidents.models.base import Base, BaseModel
from ttc_incidents.models.incident import Alert, AlertSource, IncidentThread, ThreadStatus
from ttc_incidents.models.maintenance import PlannedMaintenance

__all__ = [
    # Base
    "Base",
    "BaseModel",
    # Incident models
    "Alert",
    "AlertSource",
    "IncidentThread",
    "ThreadStatus",
    # Scheduled closures
    "PlannedMaintenance",
    # Accuracy monitoring
    "AlertAccuracyLog",
    "AlertAccuracyReport",
]
