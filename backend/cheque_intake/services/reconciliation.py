"""
Result Reconciliation

Pairs the cheques returned by one OCR batch with the images that were
submitted, by position. Field values are taken as returned.
"""

from typing import List, Sequence

from cheque_intake.models import BatchResult, ChequeEntry, UploadedImage


class RecordCountMismatchError(Exception):
    """The OCR gateway returned a different number of cheques than images sent."""

    def __init__(self, submitted: int, returned: int):
        self.submitted = submitted
        self.returned = returned
        super().__init__(
            f"Expected {submitted} extracted cheques but the OCR service returned {returned}. "
            "Please upload the images again."
        )


def reconcile(batch: BatchResult, images: Sequence[UploadedImage]) -> List[ChequeEntry]:
    """
    Zip batch records with their source images.

    Raises:
        RecordCountMismatchError: when the counts differ; nothing is truncated
    """
    if len(batch.cheques) != len(images):
        raise RecordCountMismatchError(len(images), len(batch.cheques))

    return [
        ChequeEntry(detail=detail, source=image)
        for detail, image in zip(batch.cheques, images)
    ]
