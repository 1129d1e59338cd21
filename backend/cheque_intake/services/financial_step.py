"""
Financial Info Step

Drives the cheque part of tenant onboarding:
1. Collect cheque images in the upload queue
2. Send them to the OCR gateway in one batch
3. Pair the extracted cheques with their images
4. Let the operator correct the records
5. Validate and hand the result to the onboarding wizard

Phases: UPLOADING (no records) -> REVIEWING (records present) -> SUBMITTED.
"Upload more" goes back to UPLOADING and throws away images and records.

Every OCR call remembers the step generation it started in. Submitting,
abandoning or restarting the step bumps the generation, so a response that
arrives afterwards is dropped instead of overwriting newer state.
"""

import asyncio
import contextlib
import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from cheque_intake.clients.textract_client import (
    DEFAULT_ERROR_MESSAGE,
    OcrServiceError,
    TextractClient,
    describe_service_error,
)
from cheque_intake.models import (
    BankAccountOption,
    BatchResult,
    ChequeEntry,
    FinancialInfoData,
    FirstMonthPaymentMethod,
    OverallStatus,
    StepPhase,
    UploadedImage,
)
from cheque_intake.services.notifier import Notifier, LoggingNotifier
from cheque_intake.services.reconciliation import RecordCountMismatchError, reconcile
from cheque_intake.services.record_set import EditableRecordSet, format_currency
from cheque_intake.services.upload_queue import MAX_CHEQUE_IMAGES, UploadQueue

logger = logging.getLogger(__name__)

EMPTY_QUEUE_MESSAGE = "Please upload at least one cheque image"
ALL_PROCESSED_MESSAGE = "All cheques processed successfully"
PARTIAL_FALLBACK_MESSAGE = "Some cheques need review. Please verify and complete the missing details."
VALIDATION_FAILED_MESSAGE = "Please fix the validation errors"
DISCARDED_MESSAGE = "OCR result discarded because the step changed while processing"

# Cosmetic progress while waiting on the gateway
PROGRESS_START = 10
PROGRESS_STEP = 10
PROGRESS_CAP = 90
PROGRESS_TICK_SECONDS = 0.5


class StepStateError(Exception):
    """The requested action is not allowed in the step's current state."""


@dataclass
class OcrOutcome:
    """Result of one `process_cheques` call; failures are values, not exceptions."""
    ok: bool
    batch: Optional[BatchResult] = None
    error_message: Optional[str] = None
    discarded: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "overallStatus": self.batch.overall_status.value if self.batch else None,
            "validationMessage": self.batch.validation_message if self.batch else None,
            "errorMessage": self.error_message,
            "discarded": self.discarded,
        }


@dataclass
class SubmitOutcome:
    ok: bool
    errors: Dict[str, str] = field(default_factory=dict)
    data: Optional[FinancialInfoData] = None


class FinancialInfoStep:
    """
    One instance of the Financial Info step.

    Collaborators are injected: the OCR client, the notifier and the
    wizard's completion/back callbacks.
    """

    def __init__(
        self,
        quotation_id: str,
        expected_cheque_count: int,
        textract_client: TextractClient,
        notifier: Optional[Notifier] = None,
        data: Optional[FinancialInfoData] = None,
        first_month_payment_method: Optional[FirstMonthPaymentMethod] = None,
        on_complete: Optional[Callable[[FinancialInfoData], None]] = None,
        on_back: Optional[Callable[[FinancialInfoData], None]] = None,
        max_images: int = MAX_CHEQUE_IMAGES,
        currency: str = "AED",
        step_id: Optional[str] = None,
    ):
        data = data or FinancialInfoData()

        self.step_id = step_id
        self.quotation_id = quotation_id
        # Already adjusted upstream when the first month is paid in cash
        self.expected_cheque_count = expected_cheque_count
        self.first_month_payment_method = first_month_payment_method
        self.textract = textract_client
        self.notifier = notifier or LoggingNotifier()
        self.on_complete = on_complete
        self.on_back = on_back
        self.currency = currency

        self.queue = UploadQueue(capacity=max_images)
        self.record_set = EditableRecordSet(
            ChequeEntry(detail=detail) for detail in data.cheque_details
        )
        self.bank_accounts: List[BankAccountOption] = []
        self.selected_bank_account_id: Optional[str] = data.bank_account_id
        self._initial_data = data

        self.errors: Dict[str, str] = {}
        self.is_processing = False
        self.progress = 0

        self._generation = 0
        self._submitted = False
        self._abandoned = False

    # ==================== STATE ====================

    @property
    def phase(self) -> StepPhase:
        if self._submitted:
            return StepPhase.SUBMITTED
        if len(self.record_set):
            return StepPhase.REVIEWING
        return StepPhase.UPLOADING

    @property
    def selected_bank_account(self) -> Optional[BankAccountOption]:
        for account in self.bank_accounts:
            if account.id == self.selected_bank_account_id:
                return account
        return None

    def _ensure_open(self):
        if self._abandoned:
            raise StepStateError("This step has been abandoned")
        if self._submitted:
            raise StepStateError("This step has already been submitted")

    # ==================== BANK ACCOUNT ====================

    def load_bank_accounts(self, accounts: Iterable[BankAccountOption]):
        self.bank_accounts = list(accounts)

    def select_bank_account(self, account_id: Optional[str]):
        """
        Choose the "Pay To" account.

        Raises:
            ValueError: the id is not one of the loaded accounts
        """
        self._ensure_open()
        if account_id and self.bank_accounts and not any(a.id == account_id for a in self.bank_accounts):
            raise ValueError(f"Unknown bank account: {account_id}")
        self.selected_bank_account_id = account_id or None

    # ==================== UPLOAD QUEUE ====================

    def add_images(self, images: Iterable[UploadedImage]) -> List[UploadedImage]:
        self._ensure_open()
        return self.queue.add(images)

    def remove_image(self, index: int) -> UploadedImage:
        self._ensure_open()
        return self.queue.remove(index)

    # ==================== OCR ====================

    async def _advance_progress(self):
        while True:
            await asyncio.sleep(PROGRESS_TICK_SECONDS)
            self.progress = min(self.progress + PROGRESS_STEP, PROGRESS_CAP)

    async def process_cheques(self) -> OcrOutcome:
        """
        Send the queued images to the OCR gateway and rebuild the record set.

        Never raises for gateway problems; the queue is kept on every failure.

        Raises:
            StepStateError: the step is closed or a batch is already in flight
        """
        self._ensure_open()
        if self.is_processing:
            raise StepStateError("Cheques are already being processed")

        images = self.queue.files
        if not images:
            self.notifier.error(EMPTY_QUEUE_MESSAGE)
            return OcrOutcome(ok=False, error_message=EMPTY_QUEUE_MESSAGE)

        generation = self._generation
        self.is_processing = True
        self.progress = PROGRESS_START
        ticker = asyncio.create_task(self._advance_progress())

        batch: Optional[BatchResult] = None
        failure: Optional[OcrServiceError] = None
        try:
            batch = await self.textract.process_cheques(images, self.quotation_id)
            self.progress = 100
        except OcrServiceError as e:
            failure = e
        finally:
            ticker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await ticker
            self.is_processing = False
            self.progress = 0

        if generation != self._generation:
            logger.info(
                "Discarding late OCR response",
                extra={"quotation_id": self.quotation_id, "step_id": self.step_id}
            )
            return OcrOutcome(ok=False, batch=batch, error_message=DISCARDED_MESSAGE, discarded=True)

        if failure is not None:
            message = describe_service_error(failure)
            logger.warning(f"Failed to process cheques: {failure}")
            self.notifier.error(message)
            return OcrOutcome(ok=False, error_message=message)

        return self._apply_batch(batch, images)

    def _apply_batch(self, batch: BatchResult, images: List[UploadedImage]) -> OcrOutcome:
        if batch.overall_status == OverallStatus.VALIDATION_ERROR:
            message = batch.validation_message or DEFAULT_ERROR_MESSAGE
            self.notifier.error(message)
            return OcrOutcome(ok=False, batch=batch, error_message=message)

        if batch.overall_status == OverallStatus.PROCESSING_ERROR:
            self.notifier.error(DEFAULT_ERROR_MESSAGE)
            return OcrOutcome(ok=False, batch=batch, error_message=DEFAULT_ERROR_MESSAGE)

        try:
            entries = reconcile(batch, images)
        except RecordCountMismatchError as e:
            logger.warning(
                f"OCR record count mismatch: sent {e.submitted}, got {e.returned}",
                extra={"quotation_id": self.quotation_id}
            )
            self.notifier.error(str(e))
            return OcrOutcome(ok=False, batch=batch, error_message=str(e))

        self.record_set.replace(entries)

        if batch.overall_status == OverallStatus.SUCCESS:
            self.notifier.success(ALL_PROCESSED_MESSAGE)
        else:
            self.notifier.warning(batch.validation_message or PARTIAL_FALLBACK_MESSAGE)

        return OcrOutcome(ok=True, batch=batch)

    # ==================== RECORDS ====================

    def toggle_edit(self, index: int) -> bool:
        self._ensure_open()
        return self.record_set.toggle_edit(index)

    def update_record(self, index: int, field_name: str, value: Any):
        self._ensure_open()
        return self.record_set.update(index, field_name, value)

    def remove_record(self, index: int) -> ChequeEntry:
        """Remove a record and, if it is still queued, the image it was read from."""
        self._ensure_open()
        entry = self.record_set.remove(index)
        if entry.source is not None:
            self.queue.discard(entry.source)
        return entry

    def upload_more(self):
        """Start over: drop every record and queued image."""
        self._ensure_open()
        self._generation += 1
        self.queue.clear()
        self.record_set.clear()
        self.errors = {}

    # ==================== COMPLETION ====================

    def _snapshot(self) -> FinancialInfoData:
        account = self.selected_bank_account
        if account:
            return FinancialInfoData(
                cheque_details=[dataclasses.replace(r) for r in self.record_set.records],
                bank_account_id=account.id,
                bank_account_name=account.account_name,
                bank_name=account.bank_name,
            )

        restored = self._initial_data
        same_account = restored.bank_account_id == self.selected_bank_account_id
        return FinancialInfoData(
            cheque_details=[dataclasses.replace(r) for r in self.record_set.records],
            bank_account_id=self.selected_bank_account_id,
            bank_account_name=restored.bank_account_name if same_account else None,
            bank_name=restored.bank_name if same_account else None,
        )

    def submit(self) -> SubmitOutcome:
        """
        Validate everything and, if clean, hand the data to the wizard.

        A blocked submission changes nothing except the reported errors.
        """
        self._ensure_open()

        errors = self.record_set.validate(self.selected_bank_account_id, self.expected_cheque_count)
        if errors:
            self.errors = dict(errors)
            self.notifier.error(VALIDATION_FAILED_MESSAGE)
            return SubmitOutcome(ok=False, errors=dict(errors))

        self.errors = {}
        data = self._snapshot()
        self._submitted = True
        self._generation += 1
        self.queue.clear()

        logger.info(
            f"Financial info submitted with {len(data.cheque_details)} cheques",
            extra={"quotation_id": self.quotation_id, "step_id": self.step_id}
        )

        if self.on_complete:
            self.on_complete(data)
        return SubmitOutcome(ok=True, data=data)

    def back(self) -> FinancialInfoData:
        """Return to the previous wizard step without losing edits."""
        data = self._snapshot()
        if self.on_back:
            self.on_back(data)
        return data

    def abandon(self):
        """The operator left the wizard; in-flight OCR results will be ignored."""
        self._generation += 1
        self._abandoned = True
        self.queue.clear()
        self.record_set.clear()

    # ==================== VIEW ====================

    def to_dict(self) -> Dict[str, Any]:
        account = self.selected_bank_account
        return {
            "stepId": self.step_id,
            "phase": self.phase.value,
            "quotationId": self.quotation_id,
            "expectedChequeCount": self.expected_cheque_count,
            "firstMonthPaymentMethod": (
                self.first_month_payment_method.value if self.first_month_payment_method else None
            ),
            "firstPaymentIsCash": self.first_month_payment_method == FirstMonthPaymentMethod.CASH,
            "queue": [image.to_dict() for image in self.queue.files],
            "remainingSlots": self.queue.remaining_slots,
            "records": self.record_set.to_rows(self.currency),
            "uploadedChequeCount": len(self.record_set),
            "totalAmount": str(self.record_set.total_amount),
            "totalAmountDisplay": format_currency(self.record_set.total_amount, self.currency),
            "isProcessing": self.is_processing,
            "progress": self.progress,
            "errors": dict(self.errors),
            "selectedBankAccountId": self.selected_bank_account_id,
            "selectedBankAccount": account.to_dict() if account else None,
            "bankAccounts": [a.to_dict() for a in self.bank_accounts],
        }
