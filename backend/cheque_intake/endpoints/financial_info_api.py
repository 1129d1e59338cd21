"""
Financial Info API Endpoints

REST surface for the cheque step of tenant onboarding:
- POST   /onboarding/financial-info/steps                          - Start a step
- GET    /onboarding/financial-info/steps/{id}                     - Current state
- DELETE /onboarding/financial-info/steps/{id}                     - Abandon
- GET    /onboarding/financial-info/steps/{id}/bank-accounts       - Pay To options
- PUT    /onboarding/financial-info/steps/{id}/bank-account        - Select Pay To
- POST   /onboarding/financial-info/steps/{id}/images              - Queue images
- DELETE /onboarding/financial-info/steps/{id}/images/{index}      - Unqueue image
- POST   /onboarding/financial-info/steps/{id}/process             - Run OCR
- POST   /onboarding/financial-info/steps/{id}/records/{index}/toggle-edit
- PATCH  /onboarding/financial-info/steps/{id}/records/{index}     - Edit a field
- DELETE /onboarding/financial-info/steps/{id}/records/{index}     - Drop a cheque
- POST   /onboarding/financial-info/steps/{id}/upload-more         - Start over
- POST   /onboarding/financial-info/steps/{id}/submit              - Validate and finish
- POST   /onboarding/financial-info/steps/{id}/back                - Leave, keeping edits

Every step response carries the notices raised while handling the request.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from config import get_settings
from logging_config import set_request_context
from utils.validation_errors import (
    raise_invalid_parameter,
    raise_missing_parameter,
    raise_validation_error,
)
from cheque_intake.clients.bank_accounts import BankAccountDirectory, BankAccountLookupError
from cheque_intake.clients.textract_client import TextractClient
from cheque_intake.models import FinancialInfoData, UploadedImage
from cheque_intake.schemas import (
    BackResponse,
    BankAccountsResponse,
    CreateStepRequest,
    ProcessResponse,
    SelectBankAccountRequest,
    StepResponse,
    SubmitResponse,
    UpdateRecordRequest,
    UploadResponse,
)
from cheque_intake.services.financial_step import FinancialInfoStep, StepStateError
from cheque_intake.services.notifier import CollectingNotifier
from cheque_intake.services.step_registry import StepNotFoundError, StepRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/onboarding/financial-info", tags=["Financial Info"])

ALLOWED_CONTENT_TYPES = {"image/jpeg", "image/jpg", "image/png"}


# ==================== Dependencies ====================

_settings = get_settings()

step_registry = StepRegistry(
    max_images=_settings.MAX_CHEQUE_IMAGES,
    currency=_settings.CURRENCY_CODE,
)
textract_client = TextractClient(
    base_url=_settings.TEXTRACT_SERVICE_URL,
    token=_settings.TEXTRACT_SERVICE_TOKEN,
    timeout=_settings.TEXTRACT_TIMEOUT_SECONDS,
)
bank_account_directory = BankAccountDirectory(
    base_url=_settings.BANK_ACCOUNTS_SERVICE_URL,
    token=_settings.BANK_ACCOUNTS_SERVICE_TOKEN,
    cache_minutes=_settings.BANK_ACCOUNTS_CACHE_MINUTES,
)


def get_step_registry() -> StepRegistry:
    return step_registry


def get_textract_client() -> TextractClient:
    return textract_client


def get_bank_account_directory() -> BankAccountDirectory:
    return bank_account_directory


# ==================== Audit Logging ====================

def log_step_event(event_type: str, step: FinancialInfoStep, details: dict, success: bool = True):
    """Log a step event. Cheque numbers and account numbers never go in `details`."""
    log_entry = {
        "event": event_type,
        "quotation_id": step.quotation_id,
        "details": details,
        "success": success,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }

    if success:
        logger.info(f"Financial info event: {event_type}", extra=log_entry)
    else:
        logger.warning(f"Financial info event FAILED: {event_type}", extra=log_entry)


# ==================== Helpers ====================

def _load_step(step_id: str, registry: StepRegistry) -> FinancialInfoStep:
    try:
        step = registry.get(step_id)
    except StepNotFoundError:
        raise HTTPException(status_code=404, detail=f"Financial info step not found: {step_id}")
    set_request_context(step_id=step_id)
    return step


@contextmanager
def step_action():
    """Map step exceptions onto HTTP errors."""
    try:
        yield
    except StepStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except IndexError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise_validation_error(str(e))


def _drain_notices(step: FinancialInfoStep) -> list:
    if isinstance(step.notifier, CollectingNotifier):
        return [notice.to_dict() for notice in step.notifier.drain()]
    return []


def _step_response(step: FinancialInfoStep) -> StepResponse:
    return StepResponse(step=step.to_dict(), notices=_drain_notices(step))


async def _refresh_bank_accounts(step: FinancialInfoStep, directory: BankAccountDirectory):
    accounts = await directory.list_accounts()
    step.load_bank_accounts(accounts)


# ==================== Endpoints ====================

@router.post("/steps", response_model=StepResponse, status_code=201, summary="Start financial info step")
async def create_step(
    request: CreateStepRequest,
    registry: StepRegistry = Depends(get_step_registry),
    client: TextractClient = Depends(get_textract_client),
    directory: BankAccountDirectory = Depends(get_bank_account_directory),
):
    """
    Start the cheque step for a quotation.

    Previously saved data (when the operator navigates back to this step)
    is restored as the initial record set and bank account selection.
    """
    data = None
    if request.data:
        try:
            data = FinancialInfoData.from_dict(request.data.model_dump(mode="json"))
        except ValueError as e:
            raise_invalid_parameter("data", str(e))

    step = registry.create(
        quotation_id=request.quotationId,
        expected_cheque_count=request.expectedChequeCount,
        textract_client=client,
        data=data,
        first_month_payment_method=request.firstMonthPaymentMethod,
    )
    set_request_context(step_id=step.step_id)

    try:
        await _refresh_bank_accounts(step, directory)
    except BankAccountLookupError as e:
        logger.warning(f"Bank accounts unavailable for new step: {e}")
        step.notifier.warning("Bank accounts could not be loaded. Please try again.")

    log_step_event(
        "financial_info.step.created",
        step,
        {"expected_cheque_count": step.expected_cheque_count, "restored_records": len(step.record_set)}
    )
    return _step_response(step)


@router.get("/steps/{step_id}", response_model=StepResponse, summary="Step state")
async def get_step(step_id: str, registry: StepRegistry = Depends(get_step_registry)):
    """Current state, including OCR progress while a batch is in flight."""
    return _step_response(_load_step(step_id, registry))


@router.delete("/steps/{step_id}", status_code=204, summary="Abandon step")
async def abandon_step(step_id: str, registry: StepRegistry = Depends(get_step_registry)):
    step = _load_step(step_id, registry)
    registry.discard(step_id)
    log_step_event("financial_info.step.abandoned", step, {})


@router.get("/steps/{step_id}/bank-accounts", response_model=BankAccountsResponse, summary="Pay To options")
async def list_bank_accounts(
    step_id: str,
    registry: StepRegistry = Depends(get_step_registry),
    directory: BankAccountDirectory = Depends(get_bank_account_directory),
):
    step = _load_step(step_id, registry)
    try:
        await _refresh_bank_accounts(step, directory)
    except BankAccountLookupError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return BankAccountsResponse(accounts=[a.to_dict() for a in step.bank_accounts])


@router.put("/steps/{step_id}/bank-account", response_model=StepResponse, summary="Select Pay To account")
async def select_bank_account(
    step_id: str,
    request: SelectBankAccountRequest,
    registry: StepRegistry = Depends(get_step_registry),
    directory: BankAccountDirectory = Depends(get_bank_account_directory),
):
    step = _load_step(step_id, registry)
    if request.bankAccountId and not step.bank_accounts:
        try:
            await _refresh_bank_accounts(step, directory)
        except BankAccountLookupError as e:
            raise HTTPException(status_code=502, detail=str(e))

    with step_action():
        step.select_bank_account(request.bankAccountId)
    return _step_response(step)


@router.post("/steps/{step_id}/images", response_model=UploadResponse, summary="Queue cheque images")
async def upload_images(
    step_id: str,
    chequeImages: Optional[List[UploadFile]] = File(default=None),
    registry: StepRegistry = Depends(get_step_registry),
):
    """
    Add cheque images to the queue.

    Only JPEG and PNG images up to the configured size are accepted. Images
    beyond the queue capacity are dropped and reported in `dropped`.
    """
    step = _load_step(step_id, registry)
    settings = get_settings()

    if not chequeImages:
        raise_missing_parameter("chequeImages", "Please upload at least one cheque image")

    images = []
    for position, upload in enumerate(chequeImages, start=1):
        content_type = (upload.content_type or "").lower()
        if content_type not in ALLOWED_CONTENT_TYPES:
            raise_invalid_parameter(
                "chequeImages",
                "Invalid file type. Only JPEG and PNG images are supported.",
                upload.filename
            )

        content = await upload.read()
        if not content:
            raise_invalid_parameter("chequeImages", "Cheque image is empty", upload.filename)
        if len(content) > settings.max_cheque_image_bytes:
            raise_invalid_parameter(
                "chequeImages",
                f"Cheque image exceeds {settings.MAX_CHEQUE_IMAGE_SIZE_MB}MB",
                upload.filename
            )

        images.append(UploadedImage(
            file_name=upload.filename or f"cheque-{position}",
            content_type=content_type,
            content=content,
        ))

    with step_action():
        accepted = step.add_images(images)

    response = _step_response(step)
    return UploadResponse(
        step=response.step,
        notices=response.notices,
        accepted=len(accepted),
        dropped=len(images) - len(accepted),
    )


@router.delete("/steps/{step_id}/images/{index}", response_model=StepResponse, summary="Remove queued image")
async def remove_image(step_id: str, index: int, registry: StepRegistry = Depends(get_step_registry)):
    step = _load_step(step_id, registry)
    with step_action():
        step.remove_image(index)
    return _step_response(step)


@router.post("/steps/{step_id}/process", response_model=ProcessResponse, summary="Run OCR on queued images")
async def process_cheques(step_id: str, registry: StepRegistry = Depends(get_step_registry)):
    """
    Send every queued image to the OCR gateway in one batch.

    Gateway failures come back as `outcome.ok = false` with a notice; the
    queue and the current records are kept so the operator can retry.
    """
    step = _load_step(step_id, registry)
    log_step_event("financial_info.ocr.started", step, {"image_count": len(step.queue)})

    with step_action():
        outcome = await step.process_cheques()

    log_step_event(
        "financial_info.ocr.completed" if outcome.ok else "financial_info.ocr.failed",
        step,
        {
            "overall_status": outcome.batch.overall_status.value if outcome.batch else None,
            "record_count": len(step.record_set),
            "discarded": outcome.discarded,
        },
        success=outcome.ok
    )

    response = _step_response(step)
    return ProcessResponse(step=response.step, notices=response.notices, outcome=outcome.to_dict())


@router.post("/steps/{step_id}/records/{index}/toggle-edit", response_model=StepResponse, summary="Toggle row edit")
async def toggle_edit(step_id: str, index: int, registry: StepRegistry = Depends(get_step_registry)):
    step = _load_step(step_id, registry)
    with step_action():
        step.toggle_edit(index)
    return _step_response(step)


@router.patch("/steps/{step_id}/records/{index}", response_model=StepResponse, summary="Edit a cheque field")
async def update_record(
    step_id: str,
    index: int,
    request: UpdateRecordRequest,
    registry: StepRegistry = Depends(get_step_registry),
):
    step = _load_step(step_id, registry)
    with step_action():
        step.update_record(index, request.field, request.value)
    return _step_response(step)


@router.delete("/steps/{step_id}/records/{index}", response_model=StepResponse, summary="Remove a cheque")
async def remove_record(step_id: str, index: int, registry: StepRegistry = Depends(get_step_registry)):
    """Remove a cheque record and the image it was read from, if still queued."""
    step = _load_step(step_id, registry)
    with step_action():
        step.remove_record(index)
    return _step_response(step)


@router.post("/steps/{step_id}/upload-more", response_model=StepResponse, summary="Discard and upload again")
async def upload_more(step_id: str, registry: StepRegistry = Depends(get_step_registry)):
    step = _load_step(step_id, registry)
    with step_action():
        step.upload_more()
    return _step_response(step)


@router.post("/steps/{step_id}/submit", response_model=SubmitResponse, summary="Validate and complete")
async def submit_step(step_id: str, registry: StepRegistry = Depends(get_step_registry)):
    """
    Validate the step and hand the cheques to the onboarding wizard.

    Blocked submissions return `ok = false` with every problem in `errors`.
    """
    step = _load_step(step_id, registry)
    with step_action():
        outcome = step.submit()

    log_step_event(
        "financial_info.submitted" if outcome.ok else "financial_info.submit_blocked",
        step,
        {"record_count": len(step.record_set), "error_keys": list(outcome.errors)},
        success=outcome.ok
    )

    response = _step_response(step)
    return SubmitResponse(
        step=response.step,
        notices=response.notices,
        ok=outcome.ok,
        errors=outcome.errors,
        data=outcome.data.to_dict() if outcome.data else None,
    )


@router.post("/steps/{step_id}/back", response_model=BackResponse, summary="Go back, keeping edits")
async def go_back(step_id: str, registry: StepRegistry = Depends(get_step_registry)):
    step = _load_step(step_id, registry)
    data = step.back()
    response = _step_response(step)
    return BackResponse(step=response.step, notices=response.notices, data=data.to_dict())
