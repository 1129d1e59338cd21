"""
Request/response models for the Financial Info API.

Field names are camelCase to match the onboarding frontend.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from cheque_intake.models import FirstMonthPaymentMethod


class ChequeDetailPayload(BaseModel):
    """A cheque record as stored in earlier wizard data."""
    chequeIndex: Optional[int] = None
    fileName: Optional[str] = None
    bankName: Optional[str] = None
    chequeNumber: Optional[str] = None
    amount: Optional[Decimal] = None
    chequeDate: Optional[date] = None
    payTo: Optional[str] = None
    chequeFrom: Optional[str] = None
    confidenceScore: Optional[float] = None
    status: str = "FAILED"
    errorMessage: Optional[str] = None


class FinancialInfoPayload(BaseModel):
    chequeDetails: List[ChequeDetailPayload] = Field(default_factory=list)
    bankAccountId: Optional[str] = None
    bankAccountName: Optional[str] = None
    bankName: Optional[str] = None


class CreateStepRequest(BaseModel):
    """Start a Financial Info step for one quotation."""
    quotationId: str = Field(..., min_length=1, description="Quotation the cheques pay for")
    expectedChequeCount: int = Field(..., ge=0, description="Cheques required by the payment schedule")
    firstMonthPaymentMethod: Optional[FirstMonthPaymentMethod] = Field(
        default=None,
        description="Only used for the 'First payment is Cash' badge"
    )
    data: Optional[FinancialInfoPayload] = Field(
        default=None,
        description="Data previously saved by this step, if the operator came back"
    )


class SelectBankAccountRequest(BaseModel):
    bankAccountId: Optional[str] = None


class UpdateRecordRequest(BaseModel):
    field: str = Field(..., description="bankName, chequeNumber, amount, chequeDate, payTo or chequeFrom")
    value: Optional[Union[str, int, float]] = None


class NoticeResponse(BaseModel):
    level: str
    message: str


class StepResponse(BaseModel):
    """Current step state plus the notices raised by this request."""
    step: Dict[str, Any]
    notices: List[NoticeResponse] = Field(default_factory=list)


class UploadResponse(StepResponse):
    accepted: int
    dropped: int


class ProcessResponse(StepResponse):
    outcome: Dict[str, Any]


class SubmitResponse(StepResponse):
    ok: bool
    errors: Dict[str, str] = Field(default_factory=dict)
    data: Optional[Dict[str, Any]] = None


class BackResponse(StepResponse):
    data: Dict[str, Any]


class BankAccountsResponse(BaseModel):
    accounts: List[Dict[str, Any]]
