"""Signal monitors"""

from .audio_monitor import AudioMonitor
from .base import BaseMonitor
from .browser_security_monitor import BrowserSecurityMonitor
from .face_monitor import FaceMonitor
from .network_monitor import NetworkMonitor
from .visibility_monitor import VisibilityMonitor

__all__ = [
    "AudioMonitor",
    "BaseMonitor",
    "BrowserSecurityMonitor",
    "FaceMonitor",
    "NetworkMonitor",
    "VisibilityMonitor",
]
