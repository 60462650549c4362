"""Similarity-weighted nearest-neighbour value estimator.

Not a trained model: every estimate is a deterministic function of the query
and the training samples loaded for this invocation.

Dissimilarity of a training sample T to a query Q (lower is more similar):

    0.4  * great-circle miles between Q and T
  + 0.3  * 10 * |Q.acres - T.acres| / Q.acres
  + 0.2  * (|Q.year - T.year| / 50, or 0.5 if either year is unknown)
  + 0.05 * 5 * (types differ)
  + 0.05 * 3 * (ZIPs differ)

The k lowest-scoring samples (ties keep training order) are combined as a
weighted mean with weight 1 / (1 + score). Confidence is
100 * (1 - coefficient of variation) of their values, clamped to [0, 100].
"""

import heapq
import logging
import math
from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from .config import DEFAULT_TRAINING_LIMIT
from .models import Property
from .schemas import Comparable, Estimate, FeatureVector, TrainingSample

logger = logging.getLogger(__name__)

EARTH_RADIUS_MILES = 3959.0
DEFAULT_K = 20
COMPARABLES_RETURNED = 5

# Score weights
WEIGHT_DISTANCE = 0.4
WEIGHT_SIZE = 0.3
WEIGHT_AGE = 0.2
WEIGHT_TYPE = 0.05
WEIGHT_ZIP = 0.05

SIZE_SCALE = 10
AGE_NORMALIZER_YEARS = 50
UNKNOWN_AGE_PENALTY = 0.5
TYPE_MISMATCH_PENALTY = 5
ZIP_MISMATCH_PENALTY = 3


def great_circle_miles(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine distance in miles."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    a = min(1.0, a)
    return EARTH_RADIUS_MILES * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def similarity_score(query: FeatureVector, sample: TrainingSample) -> float:
    """Composite dissimilarity of a training sample to a complete query."""
    distance = great_circle_miles(query.latitude, query.longitude, sample.latitude, sample.longitude)
    size_diff = abs(query.area_acres - sample.area_acres) / query.area_acres
    if query.year_built and sample.year_built:
        age_diff = abs(query.year_built - sample.year_built) / AGE_NORMALIZER_YEARS
    else:
        age_diff = UNKNOWN_AGE_PENALTY
    type_mismatch = 0 if query.property_type == sample.property_type else 1
    zip_mismatch = 0 if query.zip == sample.zip else 1

    return (
        WEIGHT_DISTANCE * distance
        + WEIGHT_SIZE * SIZE_SCALE * size_diff
        + WEIGHT_AGE * age_diff
        + WEIGHT_TYPE * TYPE_MISMATCH_PENALTY * type_mismatch
        + WEIGHT_ZIP * ZIP_MISMATCH_PENALTY * zip_mismatch
    )


def confidence_from_values(values: Sequence[float]) -> float:
    """100 * (1 - coefficient of variation), clamped to [0, 100]."""
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    if mean <= 0:
        return 0.0
    variance = sum((v - mean) ** 2 for v in values) / len(values)
    cv = math.sqrt(variance) / mean
    return max(0.0, min(100.0, 100.0 * (1.0 - cv)))


class ValueEstimator:
    """Answers point queries against an in-memory set of appraised properties."""

    def __init__(self, samples: Sequence[TrainingSample], k: int = DEFAULT_K):
        self.samples = list(samples)
        self.k = k

    @classmethod
    def from_store(
        cls,
        session: Session,
        limit: int = DEFAULT_TRAINING_LIMIT,
        k: int = DEFAULT_K,
    ) -> "ValueEstimator":
        """Load training samples: appraised rows with location and positive acreage."""
        stmt = (
            select(
                Property.account_number,
                Property.latitude,
                Property.longitude,
                Property.area_acres,
                Property.year_built,
                Property.property_type,
                Property.zip,
                Property.total_value,
            )
            .where(
                Property.total_value > 0,
                Property.latitude.is_not(None),
                Property.longitude.is_not(None),
                Property.area_acres > 0,
            )
            .order_by(Property.id)
            .limit(limit)
        )
        samples = [
            TrainingSample(
                account_number=row.account_number,
                latitude=row.latitude,
                longitude=row.longitude,
                area_acres=row.area_acres,
                year_built=row.year_built,
                property_type=row.property_type,
                zip=row.zip,
                total_value=float(row.total_value),
            )
            for row in session.execute(stmt)
        ]
        logger.info("Loaded %d training samples", len(samples))
        return cls(samples, k=k)

    def nearest(self, query: FeatureVector) -> list[tuple[float, TrainingSample]]:
        """The k most similar samples with their scores, most similar first."""
        scored = ((similarity_score(query, sample), sample) for sample in self.samples)
        # nsmallest is stable: equal scores keep training order
        return heapq.nsmallest(self.k, scored, key=lambda pair: pair[0])

    def estimate(self, features: FeatureVector) -> Estimate:
        if not self.samples or not features.is_complete():
            return Estimate()

        neighbors = self.nearest(features)
        if not neighbors:
            return Estimate()

        total_weight = 0.0
        weighted_sum = 0.0
        for score, sample in neighbors:
            weight = 1.0 / (1.0 + score)
            weighted_sum += sample.total_value * weight
            total_weight += weight

        estimated_value = math.floor(weighted_sum / total_weight + 0.5)
        confidence = confidence_from_values([sample.total_value for _, sample in neighbors])

        comparables = [
            Comparable(
                account_number=sample.account_number,
                location=f"{sample.latitude:.4f}, {sample.longitude:.4f}",
                value=sample.total_value,
                acres=sample.area_acres,
                year_built=sample.year_built,
                distance_miles=round(
                    great_circle_miles(
                        features.latitude, features.longitude, sample.latitude, sample.longitude
                    ),
                    2,
                ),
                score=round(score, 4),
            )
            for score, sample in neighbors[:COMPARABLES_RETURNED]
        ]
        return Estimate(
            estimated_value=estimated_value,
            confidence=round(confidence, 2),
            comparables=comparables,
        )
