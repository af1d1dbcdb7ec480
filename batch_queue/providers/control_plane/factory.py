from typing import Optional

from batch_queue.core.config import settings
from batch_queue.core.constants import ControlPlaneType
from batch_queue.core.telemetry import get_logger

from .interface import ControlPlaneInterface
from .kubectl import KubectlControlPlane

logger = get_logger(__name__)


def get_control_plane(
    control_plane_type: Optional[ControlPlaneType] = None,
) -> ControlPlaneInterface:
    """
    Get a control plane client.

    Args:
        control_plane_type: Which client to use, defaults to settings.k8s_control_plane

    Returns:
        ControlPlaneInterface: A new control plane client
    """
    control_plane_type = ControlPlaneType(
        control_plane_type or settings.k8s_control_plane
    )

    match control_plane_type:
        case ControlPlaneType.API:
            # Imported lazily so kubectl users never load the client
            from .kubernetes_api import KubernetesApiControlPlane  # noqa: PLC0415

            control_plane = KubernetesApiControlPlane()
        case _:
            control_plane = KubectlControlPlane()

    logger.info(f"Using {control_plane_type.value} control plane")
    return control_plane
