"""
Upload Queue

Holds the cheque images selected for the next OCR batch.
Images past the cap are dropped without an error.
"""

import logging
from typing import Iterable, List

from cheque_intake.models import UploadedImage

logger = logging.getLogger(__name__)

MAX_CHEQUE_IMAGES = 12


class UploadQueue:
    """In-memory, ordered list of selected cheque images."""

    def __init__(self, capacity: int = MAX_CHEQUE_IMAGES):
        self.capacity = capacity
        self._files: List[UploadedImage] = []

    def __len__(self) -> int:
        return len(self._files)

    @property
    def files(self) -> List[UploadedImage]:
        """Snapshot of the queue; mutating it does not touch the queue."""
        return list(self._files)

    @property
    def remaining_slots(self) -> int:
        return max(self.capacity - len(self._files), 0)

    def add(self, files: Iterable[UploadedImage]) -> List[UploadedImage]:
        """
        Append files up to the cap.

        Returns:
            The files actually queued, in order
        """
        files = list(files)
        accepted = files[:self.remaining_slots]
        self._files.extend(accepted)

        dropped = len(files) - len(accepted)
        if dropped:
            logger.debug(f"Upload queue full: dropped {dropped} of {len(files)} images")

        return accepted

    def remove(self, index: int) -> UploadedImage:
        if not 0 <= index < len(self._files):
            raise IndexError(f"No queued image at position {index}")
        return self._files.pop(index)

    def discard(self, image: UploadedImage) -> bool:
        """Drop this exact image if it is still queued."""
        for position, queued in enumerate(self._files):
            if queued is image:
                del self._files[position]
                return True
        return False

    def clear(self):
        self._files.clear()
