"""Capacity allocation and order lifecycle core for production lines.

This package routes work orders onto finite-capacity production lines,
raises saturation alerts, and tracks every order through a fixed, ordered
pipeline of processing steps with an append-only audit trail.
"""

from .allocation import (
    AllocationResult,
    CapacityAllocator,
    SequenceCandidate,
    SequenceResult,
)
from .domain import (
    Alert,
    AlertSeverity,
    LineStatus,
    OrderStatus,
    ProcessStep,
    ProductionLine,
    StageDescriptor,
    StepStatus,
    WorkOrder,
)
from .errors import (
    CapacityExhausted,
    ErrorKind,
    NotFoundError,
    PersistenceError,
    PreconditionError,
    ProductionError,
    ValidationError,
)
from .services import ProductionService

__all__ = [
    "AllocationResult",
    "CapacityAllocator",
    "SequenceCandidate",
    "SequenceResult",
    "Alert",
    "AlertSeverity",
    "LineStatus",
    "OrderStatus",
    "ProcessStep",
    "ProductionLine",
    "StageDescriptor",
    "StepStatus",
    "WorkOrder",
    "CapacityExhausted",
    "ErrorKind",
    "NotFoundError",
    "PersistenceError",
    "PreconditionError",
    "ProductionError",
    "ValidationError",
    "ProductionService",
]
