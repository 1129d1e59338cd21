"""
Cheque Intake Module

Financial Info step of tenant onboarding:
- Queues up to 12 post-dated cheque images
- Sends them to the Textract OCR gateway in one batch
- Pairs extracted cheques with their images for review and correction
- Validates against the expected cheque count and a Pay To bank account
"""

from cheque_intake.services.financial_step import FinancialInfoStep, OcrOutcome, SubmitOutcome
from cheque_intake.endpoints.financial_info_api import router as financial_info_router

__all__ = [
    'FinancialInfoStep',
    'OcrOutcome',
    'SubmitOutcome',
    'financial_info_router'
]
