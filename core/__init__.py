"""
Core Runtime - ядро горячо перезагружаемых автоматизаций Home Assistant.
"""

from .config import Config
from .runtime import CoreRuntime
from .state_broker import StateBroker
from .automation import Automation, AutomationState
from .automation_manager import AutomationManager
from .scheduler import AutomationScheduler
from .logger import RuntimeLogger
from .models import EntityState, Subscription
from .exceptions import (
    RuntimeCoreError,
    EntityNotFoundError,
    StateWriteError,
    ServiceCallError,
    ConnectionClosedError,
    AuthenticationError,
    AutomationLoadError,
)
from .logger_helper import info, warning, error

__all__ = [
    "Config",
    "CoreRuntime",
    "StateBroker",
    "Automation",
    "AutomationState",
    "AutomationManager",
    "AutomationScheduler",
    "RuntimeLogger",
    "EntityState",
    "Subscription",
    "RuntimeCoreError",
    "EntityNotFoundError",
    "StateWriteError",
    "ServiceCallError",
    "ConnectionClosedError",
    "AuthenticationError",
    "AutomationLoadError",
    "info",
    "warning",
    "error",
]
