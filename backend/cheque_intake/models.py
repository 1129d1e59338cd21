"""
Cheque Intake - Domain Models

Data carried through the Financial Info step:
- UploadedImage: a cheque image held in memory until OCR or removal
- ChequeDetail: one OCR-derived cheque record (domain data only)
- RecordViewState: UI-only flags kept beside, not inside, the records
- BatchResult: outcome of one batched OCR call
- BankAccountOption: "Pay To" account offered by the bank account directory
- FinancialInfoData: what the step hands back to the onboarding wizard
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional, Union


def parse_amount(value: Union[str, int, float, Decimal, None]) -> Optional[Decimal]:
    """Coerce a form or wire value to Decimal; blank means absent."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().replace(",", "")
        if not value:
            return None
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return amount


def parse_date(value: Union[str, date, datetime, None]) -> Optional[date]:
    """Coerce to a calendar day. Time of day and timezone are dropped."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    value = str(value).strip()
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        raise ValueError(f"Invalid date: {value!r}")


def parse_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class ChequeProcessingStatus(str, Enum):
    """Per-image extraction status reported by the OCR gateway."""
    SUCCESS = "SUCCESS"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"


class OverallStatus(str, Enum):
    """Status of a whole OCR batch."""
    SUCCESS = "SUCCESS"
    PARTIAL_SUCCESS = "PARTIAL_SUCCESS"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    PROCESSING_ERROR = "PROCESSING_ERROR"


class FirstMonthPaymentMethod(str, Enum):
    CASH = "CASH"
    CHEQUE = "CHEQUE"


class StepPhase(str, Enum):
    """Informal phases of the Financial Info step."""
    UPLOADING = "UPLOADING"
    REVIEWING = "REVIEWING"
    SUBMITTED = "SUBMITTED"


STATUS_BADGES = {
    ChequeProcessingStatus.SUCCESS: "Extracted",
    ChequeProcessingStatus.PARTIAL: "Needs Review",
    ChequeProcessingStatus.FAILED: "Failed",
}


@dataclass
class UploadedImage:
    """A selected cheque image. Shared by the queue and its record, never mutated."""
    file_name: str
    content_type: str
    content: bytes = field(repr=False)
    size: int = 0

    def __post_init__(self):
        if not self.size:
            self.size = len(self.content)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fileName": self.file_name,
            "contentType": self.content_type,
            "size": self.size,
        }


@dataclass
class ChequeDetail:
    """One extracted cheque. Every OCR field may be missing."""
    status: ChequeProcessingStatus = ChequeProcessingStatus.FAILED
    bank_name: Optional[str] = None
    cheque_number: Optional[str] = None
    amount: Optional[Decimal] = None
    cheque_date: Optional[date] = None
    cheque_index: Optional[int] = None
    file_name: Optional[str] = None
    pay_to: Optional[str] = None
    cheque_from: Optional[str] = None
    confidence_score: Optional[float] = None
    error_message: Optional[str] = None

    @property
    def status_badge(self) -> str:
        return STATUS_BADGES[self.status]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChequeDetail":
        """Build from the camelCase shape used by the OCR gateway and the wizard."""
        status = data.get("status") or ChequeProcessingStatus.FAILED.value
        confidence = data.get("confidenceScore")
        return cls(
            status=ChequeProcessingStatus(status),
            bank_name=parse_text(data.get("bankName")),
            cheque_number=parse_text(data.get("chequeNumber")),
            amount=parse_amount(data.get("amount")),
            cheque_date=parse_date(data.get("chequeDate")),
            cheque_index=data.get("chequeIndex"),
            file_name=data.get("fileName"),
            pay_to=parse_text(data.get("payTo")),
            cheque_from=parse_text(data.get("chequeFrom")),
            confidence_score=float(confidence) if confidence is not None else None,
            error_message=data.get("errorMessage"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chequeIndex": self.cheque_index,
            "fileName": self.file_name,
            "bankName": self.bank_name,
            "chequeNumber": self.cheque_number,
            "amount": str(self.amount) if self.amount is not None else None,
            "chequeDate": self.cheque_date.isoformat() if self.cheque_date else None,
            "payTo": self.pay_to,
            "chequeFrom": self.cheque_from,
            "confidenceScore": self.confidence_score,
            "status": self.status.value,
            "errorMessage": self.error_message,
        }


@dataclass
class RecordViewState:
    """Transient per-row UI state, index-aligned with the record set."""
    is_editing: bool = False


@dataclass
class ChequeEntry:
    """A record paired with the image it was extracted from."""
    detail: ChequeDetail
    source: Optional[UploadedImage] = None


@dataclass
class BatchResult:
    """Aggregate outcome of one OCR invocation."""
    overall_status: OverallStatus
    validation_message: Optional[str] = None
    cheques: List[ChequeDetail] = field(default_factory=list)
    expected_cheque_count: Optional[int] = None
    uploaded_cheque_count: Optional[int] = None
    successful_count: int = 0
    failed_count: int = 0
    total_amount: Optional[Decimal] = None


@dataclass
class BankAccountOption:
    """A selectable "Pay To" account; read-only here."""
    id: str
    bank_name: str
    account_name: str
    account_number_masked: str
    is_primary: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BankAccountOption":
        return cls(
            id=str(data["id"]),
            bank_name=data.get("bankName") or "",
            account_name=data.get("accountName") or "",
            account_number_masked=data.get("accountNumberMasked") or "",
            is_primary=bool(data.get("isPrimary", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "bankName": self.bank_name,
            "accountName": self.account_name,
            "accountNumberMasked": self.account_number_masked,
            "isPrimary": self.is_primary,
        }


@dataclass
class FinancialInfoData:
    """Payload exchanged with the onboarding wizard (inbound and outbound)."""
    cheque_details: List[ChequeDetail] = field(default_factory=list)
    bank_account_id: Optional[str] = None
    bank_account_name: Optional[str] = None
    bank_name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FinancialInfoData":
        return cls(
            cheque_details=[ChequeDetail.from_dict(c) for c in data.get("chequeDetails") or []],
            bank_account_id=data.get("bankAccountId"),
            bank_account_name=data.get("bankAccountName"),
            bank_name=data.get("bankName"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chequeDetails": [c.to_dict() for c in self.cheque_details],
            "bankAccountId": self.bank_account_id,
            "bankAccountName": self.bank_account_name,
            "bankName": self.bank_name,
        }
