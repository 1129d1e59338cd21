"""
Textract Gateway Client

Sends a batch of cheque images to the OCR gateway and returns the parsed
batch result. Contract:
- POST /api/v1/textract/process-cheques (multipart/form-data)
  parts: chequeImages (repeated), quotationId
- Response envelope: {"success", "message", "data": ProcessChequesResponse}

Anything that is not a usable batch result raises OcrServiceError with the
messages already pulled out of the response body.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional, Sequence

import httpx

from cheque_intake.models import (
    BatchResult,
    ChequeDetail,
    OverallStatus,
    UploadedImage,
    parse_amount,
)

logger = logging.getLogger(__name__)

PROCESS_CHEQUES_PATH = "/api/v1/textract/process-cheques"

DEFAULT_ERROR_MESSAGE = "Failed to process cheques. Please try again."


class OcrServiceError(Exception):
    """The OCR call failed in transport or was rejected by the gateway."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        validation_message: Optional[str] = None,
        server_message: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.validation_message = validation_message
        self.server_message = server_message


def describe_service_error(error: OcrServiceError) -> str:
    """Most specific user-facing message available for a failed OCR call."""
    return error.validation_message or error.server_message or DEFAULT_ERROR_MESSAGE


def parse_batch_result(data: Dict[str, Any]) -> BatchResult:
    """Build a BatchResult from the gateway's ProcessChequesResponse body."""
    total_amount = parse_amount(data.get("totalAmount"))
    return BatchResult(
        overall_status=OverallStatus(data["overallStatus"]),
        validation_message=data.get("validationMessage"),
        cheques=[ChequeDetail.from_dict(c) for c in data.get("cheques") or []],
        expected_cheque_count=data.get("expectedChequeCount"),
        uploaded_cheque_count=data.get("uploadedChequeCount"),
        successful_count=data.get("successfulCount") or 0,
        failed_count=data.get("failedCount") or 0,
        total_amount=total_amount if total_amount is not None else Decimal("0"),
    )


def _error_from_response(response: httpx.Response) -> OcrServiceError:
    validation_message = None
    server_message = None
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        payload = body.get("data")
        if isinstance(payload, dict):
            validation_message = payload.get("validationMessage")
        server_message = body.get("message") or body.get("detail")
        if not isinstance(server_message, str):
            server_message = None

    return OcrServiceError(
        f"OCR gateway returned HTTP {response.status_code}",
        status_code=response.status_code,
        validation_message=validation_message,
        server_message=server_message,
    )


class TextractClient:
    """
    Client for the cheque OCR gateway.

    The gateway owns extraction; this client only ships images and reads
    the answer back.
    """

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._transport = transport

        logger.info(f"TextractClient initialized with URL: {self.base_url}")

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def process_cheques(
        self,
        images: Sequence[UploadedImage],
        quotation_id: str
    ) -> BatchResult:
        """
        Run OCR over a batch of cheque images.

        Args:
            images: Images in submission order
            quotation_id: Quotation the cheques pay for

        Returns:
            BatchResult with one cheque per image (gateway permitting)

        Raises:
            OcrServiceError: on transport failure or a non-2xx answer
        """
        files = [
            ("chequeImages", (image.file_name, image.content, image.content_type))
            for image in images
        ]
        url = f"{self.base_url}{PROCESS_CHEQUES_PATH}"

        logger.info(
            f"Submitting {len(images)} cheque images for quotation {quotation_id}",
            extra={"quotation_id": quotation_id, "image_count": len(images)}
        )

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    url,
                    headers=self._headers(),
                    files=files,
                    data={"quotationId": quotation_id},
                )
        except httpx.TimeoutException:
            logger.error("OCR gateway request timed out")
            raise OcrServiceError("OCR gateway request timed out")
        except httpx.RequestError as e:
            logger.error(f"OCR gateway request error: {e}")
            raise OcrServiceError(f"OCR gateway request error: {e}")

        if response.status_code >= 400:
            error = _error_from_response(response)
            logger.warning(
                f"OCR gateway rejected batch: HTTP {response.status_code}",
                extra={"quotation_id": quotation_id}
            )
            raise error

        try:
            body = response.json()
            batch = parse_batch_result(body["data"])
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Unreadable OCR gateway response: {e}")
            raise OcrServiceError(f"Unreadable OCR gateway response: {e}", status_code=response.status_code)

        logger.info(
            f"OCR batch finished: {batch.overall_status.value} "
            f"({batch.successful_count} ok, {batch.failed_count} failed)",
            extra={"quotation_id": quotation_id}
        )
        return batch
