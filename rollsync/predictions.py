"""Persist accepted value estimates onto unappraised properties."""

import logging
from collections.abc import Sequence
from decimal import Decimal

from sqlalchemy import update
from sqlalchemy.orm import Session

from .config import DEFAULT_CHUNK_SIZE
from .models import Property
from .schemas import Prediction

logger = logging.getLogger(__name__)

# (estimated value floor, score), highest floor first
INVESTMENT_SCORE_TIERS: tuple[tuple[int, int], ...] = (
    (500_000, 80),
    (250_000, 70),
    (100_000, 60),
)
BASE_INVESTMENT_SCORE = 50


def investment_score(estimated_value: int | float | Decimal) -> int:
    """Coarse lead score from an estimated value."""
    for floor, score in INVESTMENT_SCORE_TIERS:
        if estimated_value > floor:
            return score
    return BASE_INVESTMENT_SCORE


class PredictionWriter:
    """Writes estimates in chunks, only ever onto rows with total_value IS NULL."""

    def __init__(self, session: Session, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.session = session
        self.chunk_size = chunk_size

    def write(self, predictions: Sequence[Prediction]) -> int:
        updated = 0
        for start in range(0, len(predictions), self.chunk_size):
            chunk = predictions[start:start + self.chunk_size]
            for prediction in chunk:
                result = self.session.execute(
                    update(Property)
                    .where(
                        Property.account_number == prediction.account_number,
                        Property.total_value.is_(None),
                    )
                    .values(
                        estimated_value=Decimal(prediction.estimated_value),
                        confidence_score=Decimal(str(round(prediction.confidence, 2))),
                        investment_score=investment_score(prediction.estimated_value),
                    )
                    .execution_options(synchronize_session=False)
                )
                updated += result.rowcount or 0
            self.session.commit()
            logger.debug("  Saved %d predictions...", updated)

        logger.info("Saved %d of %d predictions", updated, len(predictions))
        return updated
