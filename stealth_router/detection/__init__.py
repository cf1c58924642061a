"""Detection feedback: signal monitoring, behavior adaptation, persona rotation."""

from stealth_router.detection.behavior_adaptor import BehaviorAdaptor, merge_adaptations
from stealth_router.detection.persona import Persona, PersonaRotator
from stealth_router.detection.signal_monitor import SignalMonitor

__all__ = [
    "BehaviorAdaptor",
    "Persona",
    "PersonaRotator",
    "SignalMonitor",
    "merge_adaptations",
]
