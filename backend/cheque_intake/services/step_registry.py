"""
Live Financial Info steps, keyed by step id.

Steps exist only in memory for as long as the operator is in the wizard.
"""

import logging
import uuid
from typing import Dict, Optional

from cheque_intake.clients.textract_client import TextractClient
from cheque_intake.models import FinancialInfoData, FirstMonthPaymentMethod
from cheque_intake.services.financial_step import FinancialInfoStep
from cheque_intake.services.notifier import CollectingNotifier

logger = logging.getLogger(__name__)


class StepNotFoundError(KeyError):
    """No live step with the given id."""


class StepRegistry:

    def __init__(self, max_images: int = 12, currency: str = "AED"):
        self.max_images = max_images
        self.currency = currency
        self._steps: Dict[str, FinancialInfoStep] = {}
        self.completed: Dict[str, FinancialInfoData] = {}

    def __len__(self) -> int:
        return len(self._steps)

    def create(
        self,
        quotation_id: str,
        expected_cheque_count: int,
        textract_client: TextractClient,
        data: Optional[FinancialInfoData] = None,
        first_month_payment_method: Optional[FirstMonthPaymentMethod] = None,
    ) -> FinancialInfoStep:
        step_id = str(uuid.uuid4())

        def on_complete(result: FinancialInfoData):
            self.completed[step_id] = result
            self._steps.pop(step_id, None)

        step = FinancialInfoStep(
            quotation_id=quotation_id,
            expected_cheque_count=expected_cheque_count,
            textract_client=textract_client,
            notifier=CollectingNotifier(),
            data=data,
            first_month_payment_method=first_month_payment_method,
            on_complete=on_complete,
            max_images=self.max_images,
            currency=self.currency,
            step_id=step_id,
        )
        self._steps[step_id] = step
        logger.info(
            f"Financial info step created for quotation {quotation_id}",
            extra={"quotation_id": quotation_id, "expected_cheque_count": expected_cheque_count}
        )
        return step

    def get(self, step_id: str) -> FinancialInfoStep:
        try:
            return self._steps[step_id]
        except KeyError:
            raise StepNotFoundError(step_id)

    def discard(self, step_id: str):
        step = self._steps.pop(step_id, None)
        if step is None:
            raise StepNotFoundError(step_id)
        step.abandon()
        self.completed.pop(step_id, None)
        logger.info("Financial info step discarded", extra={"quotation_id": step.quotation_id})
