"""
Cheque Intake Endpoints Module
"""

from .financial_info_api import router as financial_info_router

__all__ = ["financial_info_router"]
