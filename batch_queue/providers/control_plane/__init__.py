from .interface import ControlPlaneInterface, PodStatus
from .kubectl import KubectlControlPlane
from .factory import get_control_plane

__all__ = [
    "ControlPlaneInterface",
    "PodStatus",
    "KubectlControlPlane",
    "get_control_plane",
]
