"""Kernel services: stateful operations on the caller's unit of work."""

from stock_kernel.services.audit_service import AuditService
from stock_kernel.services.backdating_service import BackdatingDetector
from stock_kernel.services.consumption_service import FIFOConsumptionEngine
from stock_kernel.services.lot_service import LotDeletion, LotRepricing, LotService
from stock_kernel.services.recalculation_service import RecalculationService
from stock_kernel.services.sequence_service import SequenceCounter, SequenceService

__all__ = [
    "AuditService",
    "BackdatingDetector",
    "FIFOConsumptionEngine",
    "LotDeletion",
    "LotRepricing",
    "LotService",
    "RecalculationService",
    "SequenceCounter",
    "SequenceService",
]
