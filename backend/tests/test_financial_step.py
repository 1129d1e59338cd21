"""
Unit Tests for the Financial Info Step

Tests the cheque step workflow with a mocked OCR gateway:
- OCR batch handling (success, partial success, rejected batches, failures)
- Discarding late OCR responses
- Record editing and removal of the matching queued image
- Submission validation and completion callbacks
- Restoring previously saved data

Run with: pytest tests/test_financial_step.py -v
"""

import asyncio
import pytest
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from cheque_intake.clients.textract_client import DEFAULT_ERROR_MESSAGE, OcrServiceError
from cheque_intake.models import (
    BankAccountOption,
    BatchResult,
    ChequeDetail,
    ChequeProcessingStatus,
    FinancialInfoData,
    FirstMonthPaymentMethod,
    OverallStatus,
    StepPhase,
    UploadedImage,
)
from cheque_intake.services.financial_step import (
    ALL_PROCESSED_MESSAGE,
    EMPTY_QUEUE_MESSAGE,
    VALIDATION_FAILED_MESSAGE,
    FinancialInfoStep,
    StepStateError,
)
from cheque_intake.services.notifier import CollectingNotifier, NoticeLevel


ACCOUNTS = [
    BankAccountOption(
        id="acct-1",
        bank_name="Emirates NBD",
        account_name="Rent Collection",
        account_number_masked="****1234",
        is_primary=True,
    ),
    BankAccountOption(
        id="acct-2",
        bank_name="ADCB",
        account_name="Deposits",
        account_number_masked="****9876",
    ),
]


def make_images(count):
    return [
        UploadedImage(file_name=f"cheque-{i}.jpg", content_type="image/jpeg", content=b"jpeg" + bytes([i]))
        for i in range(count)
    ]


def complete_cheque(number, amount="12500", day=1):
    return ChequeDetail(
        status=ChequeProcessingStatus.SUCCESS,
        bank_name="Emirates NBD",
        cheque_number=number,
        amount=Decimal(amount),
        cheque_date=date(2026, day, 1),
    )


def make_batch(cheques, status=OverallStatus.SUCCESS, message=None):
    return BatchResult(overall_status=status, validation_message=message, cheques=list(cheques))


@pytest.fixture
def textract():
    client = MagicMock()
    client.process_cheques = AsyncMock()
    return client


@pytest.fixture
def notifier():
    return CollectingNotifier()


@pytest.fixture
def on_complete():
    return MagicMock()


@pytest.fixture
def step(textract, notifier, on_complete):
    step = FinancialInfoStep(
        quotation_id="QT-1001",
        expected_cheque_count=2,
        textract_client=textract,
        notifier=notifier,
        on_complete=on_complete,
    )
    step.load_bank_accounts(ACCOUNTS)
    return step


class TestProcessCheques:
    """Test OCR batch handling."""

    @pytest.mark.asyncio
    async def test_empty_queue_makes_no_call(self, step, textract, notifier):
        outcome = await step.process_cheques()

        assert outcome.ok is False
        assert outcome.error_message == EMPTY_QUEUE_MESSAGE
        textract.process_cheques.assert_not_called()
        assert notifier.notices[0].level == NoticeLevel.ERROR
        assert notifier.notices[0].message == EMPTY_QUEUE_MESSAGE

    @pytest.mark.asyncio
    async def test_success_builds_record_set(self, step, textract, notifier):
        images = make_images(2)
        step.add_images(images)
        textract.process_cheques.return_value = make_batch([complete_cheque("1"), complete_cheque("2")])

        outcome = await step.process_cheques()

        assert outcome.ok is True
        textract.process_cheques.assert_awaited_once_with(images, "QT-1001")
        assert len(step.record_set) == 2
        assert step.record_set.sources == images
        assert step.phase == StepPhase.REVIEWING
        assert step.is_processing is False
        assert notifier.notices[-1].level == NoticeLevel.SUCCESS
        assert notifier.notices[-1].message == ALL_PROCESSED_MESSAGE

    @pytest.mark.asyncio
    async def test_partial_success_keeps_failed_records(self, step, textract, notifier):
        """Three images, one unreadable: three records, one failed, and a warning."""
        step.add_images(make_images(3))
        failed = ChequeDetail(status=ChequeProcessingStatus.FAILED, error_message="Could not read cheque")
        textract.process_cheques.return_value = make_batch(
            [complete_cheque("1"), complete_cheque("2"), failed],
            status=OverallStatus.PARTIAL_SUCCESS,
            message="1 of 3 cheques could not be read",
        )

        outcome = await step.process_cheques()

        assert outcome.ok is True
        assert len(step.record_set) == 3
        assert step.record_set.records[2].status == ChequeProcessingStatus.FAILED
        assert step.record_set.records[2].status_badge == "Failed"
        assert notifier.notices[-1].level == NoticeLevel.WARNING
        assert notifier.notices[-1].message == "1 of 3 cheques could not be read"

    @pytest.mark.asyncio
    async def test_new_batch_replaces_previous_records(self, step, textract):
        step.add_images(make_images(1))
        textract.process_cheques.return_value = make_batch([complete_cheque("old")])
        await step.process_cheques()
        step.toggle_edit(0)

        textract.process_cheques.return_value = make_batch([complete_cheque("new")])
        await step.process_cheques()

        assert [r.cheque_number for r in step.record_set.records] == ["new"]
        assert step.record_set.view_states[0].is_editing is False

    @pytest.mark.asyncio
    async def test_validation_error_batch_keeps_state(self, step, textract, notifier):
        step.add_images(make_images(2))
        textract.process_cheques.return_value = make_batch(
            [], status=OverallStatus.VALIDATION_ERROR, message="Expected 2 cheques for this quotation"
        )

        outcome = await step.process_cheques()

        assert outcome.ok is False
        assert outcome.error_message == "Expected 2 cheques for this quotation"
        assert len(step.queue) == 2
        assert len(step.record_set) == 0
        assert notifier.notices[-1].level == NoticeLevel.ERROR

    @pytest.mark.asyncio
    async def test_processing_error_batch(self, step, textract, notifier):
        step.add_images(make_images(1))
        textract.process_cheques.return_value = make_batch([], status=OverallStatus.PROCESSING_ERROR)

        outcome = await step.process_cheques()

        assert outcome.ok is False
        assert notifier.notices[-1].message == DEFAULT_ERROR_MESSAGE

    @pytest.mark.asyncio
    async def test_gateway_failure_uses_most_specific_message(self, step, textract, notifier):
        step.add_images(make_images(2))
        textract.process_cheques.side_effect = OcrServiceError(
            "OCR gateway returned HTTP 400",
            status_code=400,
            validation_message="Maximum 12 cheques allowed",
            server_message="Bad request",
        )

        outcome = await step.process_cheques()

        assert outcome.ok is False
        assert outcome.error_message == "Maximum 12 cheques allowed"
        assert notifier.notices[-1].message == "Maximum 12 cheques allowed"
        assert len(step.queue) == 2
        assert step.is_processing is False
        assert step.progress == 0

    @pytest.mark.asyncio
    async def test_transport_failure_uses_default_message(self, step, textract, notifier):
        step.add_images(make_images(1))
        textract.process_cheques.side_effect = OcrServiceError("OCR gateway request timed out")

        outcome = await step.process_cheques()

        assert outcome.error_message == DEFAULT_ERROR_MESSAGE
        assert notifier.notices[-1].level == NoticeLevel.ERROR

    @pytest.mark.asyncio
    async def test_record_count_mismatch_is_reported(self, step, textract, notifier):
        step.add_images(make_images(3))
        textract.process_cheques.return_value = make_batch([complete_cheque("1")])

        outcome = await step.process_cheques()

        assert outcome.ok is False
        assert "returned 1" in outcome.error_message
        assert len(step.record_set) == 0
        assert notifier.notices[-1].level == NoticeLevel.ERROR

    @pytest.mark.asyncio
    async def test_second_process_while_in_flight_is_rejected(self, step, textract):
        release = asyncio.Event()

        async def slow_gateway(images, quotation_id):
            await release.wait()
            return make_batch([complete_cheque("1")])

        textract.process_cheques.side_effect = slow_gateway
        step.add_images(make_images(1))

        first = asyncio.create_task(step.process_cheques())
        await asyncio.sleep(0)
        assert step.is_processing is True
        assert step.progress > 0

        with pytest.raises(StepStateError):
            await step.process_cheques()

        release.set()
        outcome = await first
        assert outcome.ok is True
        assert textract.process_cheques.await_count == 1

    @pytest.mark.asyncio
    async def test_late_response_after_upload_more_is_discarded(self, step, textract, notifier):
        release = asyncio.Event()

        async def slow_gateway(images, quotation_id):
            await release.wait()
            return make_batch([complete_cheque("stale")])

        textract.process_cheques.side_effect = slow_gateway
        step.add_images(make_images(1))

        task = asyncio.create_task(step.process_cheques())
        await asyncio.sleep(0)
        step.upload_more()
        release.set()
        outcome = await task

        assert outcome.discarded is True
        assert outcome.ok is False
        assert len(step.record_set) == 0
        assert notifier.notices == []

    @pytest.mark.asyncio
    async def test_late_response_after_abandon_is_discarded(self, step, textract):
        release = asyncio.Event()

        async def slow_gateway(images, quotation_id):
            await release.wait()
            return make_batch([complete_cheque("stale")])

        textract.process_cheques.side_effect = slow_gateway
        step.add_images(make_images(1))

        task = asyncio.create_task(step.process_cheques())
        await asyncio.sleep(0)
        step.abandon()
        release.set()
        outcome = await task

        assert outcome.discarded is True
        assert len(step.record_set) == 0

    @pytest.mark.asyncio
    async def test_abandoned_step_rejects_processing(self, step):
        step.add_images(make_images(1))
        step.abandon()

        with pytest.raises(StepStateError):
            await step.process_cheques()


class TestRecords:
    """Test editing and removal through the step."""

    @pytest.mark.asyncio
    async def test_remove_record_removes_matching_image(self, step, textract):
        images = make_images(3)
        step.add_images(images)
        textract.process_cheques.return_value = make_batch(
            [complete_cheque("1"), complete_cheque("2"), complete_cheque("3")]
        )
        await step.process_cheques()

        step.remove_record(1)

        assert [r.cheque_number for r in step.record_set.records] == ["1", "3"]
        assert step.queue.files == [images[0], images[2]]
        assert step.record_set.sources == [images[0], images[2]]

    def test_remove_restored_record_without_queue(self, textract):
        data = FinancialInfoData(cheque_details=[complete_cheque("1"), complete_cheque("2")])
        step = FinancialInfoStep("QT-1", 2, textract, data=data)

        step.remove_record(0)

        assert [r.cheque_number for r in step.record_set.records] == ["2"]
        assert len(step.queue) == 0

    def test_remove_restored_record_keeps_new_images(self, textract):
        data = FinancialInfoData(cheque_details=[complete_cheque("1"), complete_cheque("2")])
        step = FinancialInfoStep("QT-1", 2, textract, data=data)
        images = make_images(2)
        step.add_images(images)

        step.remove_record(0)

        assert [r.cheque_number for r in step.record_set.records] == ["2"]
        assert step.queue.files == images

    @pytest.mark.asyncio
    async def test_remove_record_after_queue_edit(self, step, textract):
        """The queue is edited after OCR, so positions no longer line up."""
        images = make_images(3)
        step.add_images(images)
        textract.process_cheques.return_value = make_batch(
            [complete_cheque("1"), complete_cheque("2"), complete_cheque("3")]
        )
        await step.process_cheques()
        step.remove_image(0)

        step.remove_record(2)

        assert [r.cheque_number for r in step.record_set.records] == ["1", "2"]
        assert step.queue.files == [images[1]]

        step.remove_record(0)

        assert step.queue.files == [images[1]]
        assert step.record_set.sources == [images[1]]

    @pytest.mark.asyncio
    async def test_update_then_toggle(self, step, textract):
        step.add_images(make_images(1))
        textract.process_cheques.return_value = make_batch([ChequeDetail(status=ChequeProcessingStatus.PARTIAL)])
        await step.process_cheques()

        assert step.toggle_edit(0) is True
        step.update_record(0, "chequeNumber", "000777")
        step.update_record(0, "amount", "4,000")
        assert step.toggle_edit(0) is False

        record = step.record_set.records[0]
        assert record.cheque_number == "000777"
        assert record.amount == Decimal("4000")

    def test_upload_more_clears_everything(self, step):
        step.add_images(make_images(2))
        step.errors = {"bankAccount": "Please select a Pay To account"}

        step.upload_more()

        assert len(step.queue) == 0
        assert len(step.record_set) == 0
        assert step.errors == {}
        assert step.phase == StepPhase.UPLOADING


class TestBankAccount:

    def test_select_known_account(self, step):
        step.select_bank_account("acct-2")

        assert step.selected_bank_account.bank_name == "ADCB"

    def test_select_unknown_account(self, step):
        with pytest.raises(ValueError):
            step.select_bank_account("acct-99")

    def test_clear_selection(self, step):
        step.select_bank_account("acct-1")
        step.select_bank_account(None)

        assert step.selected_bank_account_id is None


class TestSubmit:
    """Test submission validation and completion."""

    def restored_step(self, textract, notifier, on_complete, cheques, expected=2, account_id="acct-1"):
        data = FinancialInfoData(cheque_details=cheques)
        step = FinancialInfoStep(
            quotation_id="QT-1001",
            expected_cheque_count=expected,
            textract_client=textract,
            notifier=notifier,
            data=data,
            on_complete=on_complete,
        )
        step.load_bank_accounts(ACCOUNTS)
        if account_id:
            step.select_bank_account(account_id)
        return step

    def test_too_few_cheques_blocks_submission(self, textract, notifier, on_complete):
        """Expected 3 cheques with only 2 records."""
        step = self.restored_step(
            textract, notifier, on_complete, [complete_cheque("1"), complete_cheque("2")], expected=3
        )

        outcome = step.submit()

        assert outcome.ok is False
        assert outcome.errors["chequeCount"] == "Expected 3 cheques, but only 2 uploaded"
        assert step.errors == outcome.errors
        on_complete.assert_not_called()
        assert notifier.notices[-1].message == VALIDATION_FAILED_MESSAGE
        assert step.phase == StepPhase.REVIEWING

    def test_missing_bank_account_blocks_submission(self, textract, notifier, on_complete):
        step = self.restored_step(
            textract, notifier, on_complete, [complete_cheque("1"), complete_cheque("2")], account_id=None
        )

        outcome = step.submit()

        assert outcome.errors == {"bankAccount": "Please select a Pay To account"}
        on_complete.assert_not_called()

    def test_blocked_submission_changes_no_records(self, textract, notifier, on_complete):
        incomplete = ChequeDetail(status=ChequeProcessingStatus.PARTIAL, cheque_number="9")
        step = self.restored_step(textract, notifier, on_complete, [complete_cheque("1"), incomplete])
        before = [r.to_dict() for r in step.record_set.records]

        outcome = step.submit()

        assert set(outcome.errors) == {"cheque_1_amount", "cheque_1_date"}
        assert [r.to_dict() for r in step.record_set.records] == before

    def test_happy_path_calls_on_complete_once(self, textract, notifier, on_complete):
        step = self.restored_step(
            textract, notifier, on_complete, [complete_cheque("1"), complete_cheque("2", day=2)]
        )

        outcome = step.submit()

        assert outcome.ok is True
        on_complete.assert_called_once()
        data = on_complete.call_args[0][0]
        assert data is outcome.data
        assert [c.cheque_number for c in data.cheque_details] == ["1", "2"]
        assert data.bank_account_id == "acct-1"
        assert data.bank_account_name == "Rent Collection"
        assert data.bank_name == "Emirates NBD"
        assert step.phase == StepPhase.SUBMITTED
        assert step.errors == {}

    def test_submit_releases_queued_images(self, textract, notifier, on_complete):
        step = self.restored_step(textract, notifier, on_complete, [complete_cheque("1"), complete_cheque("2")])
        step.add_images(make_images(2))

        outcome = step.submit()

        assert outcome.ok is True
        assert len(step.queue) == 0
        assert len(step.record_set) == 2
        assert step.to_dict()["queue"] == []

    def test_blocked_submit_keeps_queued_images(self, textract, notifier, on_complete):
        step = self.restored_step(
            textract, notifier, on_complete, [complete_cheque("1"), complete_cheque("2")], account_id=None
        )
        step.add_images(make_images(2))

        step.submit()

        assert len(step.queue) == 2

    def test_submitted_step_is_closed(self, textract, notifier, on_complete):
        step = self.restored_step(textract, notifier, on_complete, [complete_cheque("1"), complete_cheque("2")])
        step.submit()

        with pytest.raises(StepStateError):
            step.submit()
        with pytest.raises(StepStateError):
            step.update_record(0, "amount", "1")
        on_complete.assert_called_once()

    def test_submitted_data_is_a_copy(self, textract, notifier, on_complete):
        step = self.restored_step(textract, notifier, on_complete, [complete_cheque("1"), complete_cheque("2")])

        outcome = step.submit()
        outcome.data.cheque_details[0].cheque_number = "changed"

        assert step.record_set.records[0].cheque_number == "1"

    def test_fix_then_resubmit(self, textract, notifier, on_complete):
        incomplete = ChequeDetail(status=ChequeProcessingStatus.FAILED)
        step = self.restored_step(textract, notifier, on_complete, [complete_cheque("1"), incomplete])
        assert step.submit().ok is False

        step.update_record(1, "cheque_number", "000002")
        step.update_record(1, "amount", "12500")
        step.update_record(1, "cheque_date", "2026-02-01")

        assert step.submit().ok is True
        on_complete.assert_called_once()


class TestRestoreAndBack:

    def test_restored_data_seeds_state(self, textract):
        data = FinancialInfoData(
            cheque_details=[complete_cheque("1")],
            bank_account_id="acct-9",
            bank_account_name="Old Account",
            bank_name="Old Bank",
        )

        step = FinancialInfoStep("QT-1", 1, textract, data=data)

        assert step.phase == StepPhase.REVIEWING
        assert step.record_set.sources == [None]
        assert step.selected_bank_account_id == "acct-9"

    def test_back_keeps_restored_account_names(self, textract):
        on_back = MagicMock()
        data = FinancialInfoData(
            cheque_details=[complete_cheque("1")],
            bank_account_id="acct-9",
            bank_account_name="Old Account",
            bank_name="Old Bank",
        )
        step = FinancialInfoStep("QT-1", 1, textract, data=data, on_back=on_back)

        result = step.back()

        on_back.assert_called_once_with(result)
        assert result.bank_account_id == "acct-9"
        assert result.bank_account_name == "Old Account"
        assert result.bank_name == "Old Bank"

    def test_back_without_callback(self, step):
        result = step.back()

        assert result.cheque_details == []
        assert result.bank_account_id is None


class TestStepView:

    def test_first_payment_cash_badge(self, textract):
        step = FinancialInfoStep(
            "QT-1", 11, textract, first_month_payment_method=FirstMonthPaymentMethod.CASH
        )

        view = step.to_dict()

        assert view["firstPaymentIsCash"] is True
        assert view["expectedChequeCount"] == 11
        assert view["remainingSlots"] == 12

    def test_totals(self, textract):
        data = FinancialInfoData(cheque_details=[complete_cheque("1", "12500"), complete_cheque("2", "7500.40")])
        step = FinancialInfoStep("QT-1", 2, textract, data=data)

        view = step.to_dict()

        assert view["uploadedChequeCount"] == 2
        assert view["totalAmount"] == "20000.40"
        assert view["totalAmountDisplay"] == "AED 20,000"
        assert view["phase"] == "REVIEWING"
