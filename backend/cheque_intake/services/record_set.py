"""
Editable Record Set

The reviewable table of extracted cheques. Records and their view state are
kept in two index-aligned lists; every structural change touches both.
"""

import logging
from collections import OrderedDict
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional

from cheque_intake.models import (
    ChequeDetail,
    ChequeEntry,
    RecordViewState,
    UploadedImage,
    parse_amount,
    parse_date,
    parse_text,
)

logger = logging.getLogger(__name__)

# Field name -> coercion applied to raw form input
EDITABLE_FIELDS = {
    "bank_name": parse_text,
    "cheque_number": parse_text,
    "amount": parse_amount,
    "cheque_date": parse_date,
    "pay_to": parse_text,
    "cheque_from": parse_text,
}

# camelCase aliases used by the frontend form controls
FIELD_ALIASES = {
    "bankName": "bank_name",
    "chequeNumber": "cheque_number",
    "chequeDate": "cheque_date",
    "payTo": "pay_to",
    "chequeFrom": "cheque_from",
}


def format_currency(amount: Optional[Decimal], currency: str = "AED") -> str:
    """Whole-unit display string, e.g. "AED 12,500". Stored amounts are untouched."""
    if not amount:
        return f"{currency} 0"
    whole = Decimal(amount).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return f"{currency} {whole:,.0f}"


class EditableRecordSet:
    """Records extracted from one batch (or restored from earlier wizard data)."""

    def __init__(self, entries: Optional[Iterable[ChequeEntry]] = None):
        self._entries: List[ChequeEntry] = []
        self._views: List[RecordViewState] = []
        if entries:
            self.replace(entries)

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def records(self) -> List[ChequeDetail]:
        return [entry.detail for entry in self._entries]

    @property
    def sources(self) -> List[Optional[UploadedImage]]:
        return [entry.source for entry in self._entries]

    @property
    def view_states(self) -> List[RecordViewState]:
        return list(self._views)

    @property
    def total_amount(self) -> Decimal:
        return sum((r.amount or Decimal("0") for r in self.records), Decimal("0"))

    def replace(self, entries: Iterable[ChequeEntry]):
        """Swap in a fresh record set; nothing from the old one survives."""
        self._entries = list(entries)
        self._views = [RecordViewState() for _ in self._entries]

    def clear(self):
        self.replace([])

    def _check_index(self, index: int):
        if not 0 <= index < len(self._entries):
            raise IndexError(f"No cheque record at position {index}")

    def toggle_edit(self, index: int) -> bool:
        self._check_index(index)
        view = self._views[index]
        view.is_editing = not view.is_editing
        return view.is_editing

    def update(self, index: int, field: str, value: Any) -> ChequeDetail:
        """
        Overwrite one field of one record.

        Only type coercion is applied; the value is not validated here.

        Raises:
            IndexError: unknown record position
            ValueError: unknown field or a value that cannot be coerced
        """
        self._check_index(index)
        field = FIELD_ALIASES.get(field, field)
        if field not in EDITABLE_FIELDS:
            raise ValueError(f"Field '{field}' cannot be edited")

        detail = self._entries[index].detail
        setattr(detail, field, EDITABLE_FIELDS[field](value))
        return detail

    def remove(self, index: int) -> ChequeEntry:
        self._check_index(index)
        self._views.pop(index)
        return self._entries.pop(index)

    def validate(self, bank_account_id: Optional[str], expected_count: int) -> "OrderedDict[str, str]":
        """
        Collect every blocking problem; an empty result means the set can be submitted.
        """
        errors: "OrderedDict[str, str]" = OrderedDict()

        if not bank_account_id:
            errors["bankAccount"] = "Please select a Pay To account"

        if len(self._entries) < expected_count:
            errors["chequeCount"] = (
                f"Expected {expected_count} cheques, but only {len(self._entries)} uploaded"
            )

        for index, cheque in enumerate(self.records):
            position = index + 1
            if not cheque.cheque_number:
                errors[f"cheque_{index}_number"] = f"Cheque {position}: Cheque number is required"
            if cheque.amount is None or cheque.amount <= 0:
                errors[f"cheque_{index}_amount"] = f"Cheque {position}: Amount is required"
            if cheque.cheque_date is None:
                errors[f"cheque_{index}_date"] = f"Cheque {position}: Date is required"

        return errors

    def to_rows(self, currency: str = "AED") -> List[Dict[str, Any]]:
        rows = []
        for entry, view in zip(self._entries, self._views):
            row = entry.detail.to_dict()
            row["statusBadge"] = entry.detail.status_badge
            row["amountDisplay"] = format_currency(entry.detail.amount, currency)
            row["isEditing"] = view.is_editing
            row["sourceImage"] = entry.source.to_dict() if entry.source else None
            rows.append(row)
        return rows
