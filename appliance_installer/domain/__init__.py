"""Domain models for appliance installation."""

from __future__ import annotations

from .models import (
    BootVariables,
    DataAreaStatus,
    Disk,
    InstallResult,
    InstallState,
    MountHandle,
    PartitionPlan,
    PartitionRange,
    TableKind,
)


__all__ = [
    "BootVariables",
    "DataAreaStatus",
    "Disk",
    "InstallResult",
    "InstallState",
    "MountHandle",
    "PartitionPlan",
    "PartitionRange",
    "TableKind",
]
