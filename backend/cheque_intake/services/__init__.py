"""
Cheque Intake Services Module
"""

from .financial_step import FinancialInfoStep, OcrOutcome, SubmitOutcome, StepStateError
from .step_registry import StepRegistry, StepNotFoundError

__all__ = [
    "FinancialInfoStep",
    "OcrOutcome",
    "SubmitOutcome",
    "StepStateError",
    "StepRegistry",
    "StepNotFoundError"
]
