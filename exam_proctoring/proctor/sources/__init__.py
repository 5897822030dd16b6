"""Signal sources sampled by the monitors"""

from .camera import CameraSource, HaarFaceCounter, decode_frame
from .devices import ConnectivitySource, DeviceSource, DeviceStatus
from .liveness import LivenessCheck, LivenessResult
from .microphone import MicrophoneSource, pcm_level

__all__ = [
    "CameraSource",
    "HaarFaceCounter",
    "decode_frame",
    "ConnectivitySource",
    "DeviceSource",
    "DeviceStatus",
    "LivenessCheck",
    "LivenessResult",
    "MicrophoneSource",
    "pcm_level",
]
