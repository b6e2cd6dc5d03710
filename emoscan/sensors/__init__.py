"""Camera device layer."""
from .camera import CameraConstraints, CameraDevice, CameraStream, OpenCVCameraDevice, OpenCVCameraStream

__all__ = ["CameraConstraints", "CameraDevice", "CameraStream", "OpenCVCameraDevice", "OpenCVCameraStream"]
