from .child import Child
from .behavior_type import BehaviorType, BehaviorCategory
from .behavior_log import BehaviorLog
from .reward import Reward
from .app_state import AppState

__all__ = [
    "Child",
    "BehaviorType",
    "BehaviorCategory",
    "BehaviorLog",
    "Reward",
    "AppState",
]
