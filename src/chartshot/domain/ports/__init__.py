from .renderer import (
    HandleFactoryPort,
    RenderControl,
    RendererHandlePort,
    RenderSession,
)
from .storage import ArtifactStorePort, ExistenceOraclePort
from .tasks import ChartCapturePort, TaskCoordinatorPort

__all__ = [
    "ArtifactStorePort",
    "ChartCapturePort",
    "ExistenceOraclePort",
    "HandleFactoryPort",
    "RenderControl",
    "RenderSession",
    "RendererHandlePort",
    "TaskCoordinatorPort",
]
