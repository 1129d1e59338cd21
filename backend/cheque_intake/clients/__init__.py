"""
Cheque Intake Clients Module
"""

from .textract_client import TextractClient, OcrServiceError
from .bank_accounts import BankAccountDirectory, BankAccountLookupError

__all__ = ["TextractClient", "OcrServiceError", "BankAccountDirectory", "BankAccountLookupError"]
