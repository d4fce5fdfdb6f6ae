from __future__ import annotations

import logging

from .errors import ValidationError
from .models import Category


logger = logging.getLogger(__name__)


class OverrideManager:
    """Sets and clears administrator-chosen winners.

    Overrides never touch vote rows. Both operations are refused while voting
    is open; the check and the write share one store transaction.
    """

    def __init__(self, store) -> None:
        self.store = store

    def set_manual_winner(self, category_id: int, car_id: int, reason: str) -> Category:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("reason cannot be empty")

        # Raises VotingOpenError, or NotFoundError for unknown ids.
        category = self.store.set_category_override(category_id, car_id, reason, require_closed=True)
        logger.info("Manual winner set for category %s: car %s (%s)", category_id, car_id, reason)
        return category

    def clear_manual_winner(self, category_id: int) -> Category:
        category = self.store.clear_category_override(category_id, require_closed=True)
        logger.info("Manual winner cleared for category %s", category_id)
        return category
