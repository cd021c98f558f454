"""Pydantic models for FlowTrack."""

from flowtrack.models.analytics import (
    AnalysisScope,
    BottleneckAnalysis,
    BottleneckScore,
    ChainYieldReport,
    ContinuityGap,
    FlowContinuityReport,
    ProcessReadiness,
    Severity,
    StageYield,
)
from flowtrack.models.material_flow import (
    AvailableMaterial,
    MaterialFlowRecord,
    MaterialInput,
    MaterialOutput,
    QualityGrade,
    WasteClassification,
)
from flowtrack.models.transfer import (
    AutoTransferResult,
    MaterialCompatibility,
    ProcessTransfer,
    ReworkRoutingResult,
    TransferFailure,
    TransferStatus,
)

__all__ = [
    "AnalysisScope",
    "AvailableMaterial",
    "AutoTransferResult",
    "BottleneckAnalysis",
    "BottleneckScore",
    "ChainYieldReport",
    "ContinuityGap",
    "FlowContinuityReport",
    "MaterialCompatibility",
    "MaterialFlowRecord",
    "MaterialInput",
    "MaterialOutput",
    "ProcessReadiness",
    "ProcessTransfer",
    "QualityGrade",
    "ReworkRoutingResult",
    "Severity",
    "StageYield",
    "TransferFailure",
    "TransferStatus",
    "WasteClassification",
]
