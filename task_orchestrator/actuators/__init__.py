from .base import Actuator, CURRENT_URL_INSTRUCTION
from .browser_service import BrowserServiceActuator, to_readable_error

__all__ = [
    "Actuator",
    "BrowserServiceActuator",
    "CURRENT_URL_INSTRUCTION",
    "to_readable_error",
]
