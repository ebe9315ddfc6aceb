"""Domain layer definitions."""

from .attributes import AttributeMapping
from .jobs import ARTIFACT_KINDS, Job, JobStatus, map_status_code
from .workflow import (
    MANUFACTURER_PROFILES,
    AcquisitionMode,
    Manufacturer,
    ManufacturerProfile,
    WorkflowArtifacts,
    WorkflowState,
    WorkflowStep,
    get_profile,
)

__all__ = [
    "ARTIFACT_KINDS",
    "AcquisitionMode",
    "AttributeMapping",
    "Job",
    "JobStatus",
    "MANUFACTURER_PROFILES",
    "Manufacturer",
    "ManufacturerProfile",
    "WorkflowArtifacts",
    "WorkflowState",
    "WorkflowStep",
    "get_profile",
    "map_status_code",
]
