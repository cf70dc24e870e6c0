from .stores import SqlAlertStore, SqlDeviceRegistry, SqlVitalsStore
from .tables import Database

__all__ = ["Database", "SqlAlertStore", "SqlDeviceRegistry", "SqlVitalsStore"]
