from .registry import ProcessKind, ProcessRecord, ProcessRegistry
from .supervisor import ProcessMeta, ProcessSupervisor, RestartFn

__all__ = [
    "ProcessKind",
    "ProcessMeta",
    "ProcessRecord",
    "ProcessRegistry",
    "ProcessSupervisor",
    "RestartFn",
]
