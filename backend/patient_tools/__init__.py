from .core_tools import PatientDataToolset, register_tools
from .reminder_dispatch import DispatchOutcome, ReminderDispatcher

__all__ = [
    "DispatchOutcome",
    "PatientDataToolset",
    "ReminderDispatcher",
    "register_tools",
]
