"""Dual-tier certificate eligibility.

  virtual   interactive progress >= virtual_threshold
  complete  virtual AND final_score >= complete_threshold

  final_score = progress * interactive_weight/100
              + activities_score * activities_weight/100

RETRY POLICY
------------
When a learner resubmits activities, ``reevaluate_certificate`` decides
what the new evaluation may change:

  allow_retry=False  the first evaluation stands; later ones are ignored
  allow_retry=True   the new evaluation is merged monotonically: a tier,
                     once granted, is never revoked, and final_score
                     keeps its best value

Only an explicit course reset clears a stored evaluation.
"""

from __future__ import annotations

import logging

from progress_engine.core.config import ThresholdConfig
from progress_engine.core.errors import ValidationError
from progress_engine.core.metrics import CERTIFICATE_EVALUATIONS
from progress_engine.models.credential import CertificateEligibility
from progress_engine.models.progress import CourseProgressSummary
from progress_engine.services.aggregator import round_half_up

logger = logging.getLogger(__name__)


def evaluate_certificate(
    summary: CourseProgressSummary,
    activities_score: float,
    thresholds: ThresholdConfig,
) -> CertificateEligibility:
    if (
        isinstance(activities_score, bool)
        or not isinstance(activities_score, (int, float))
        or not 0 <= activities_score <= 100
    ):
        raise ValidationError(
            f"activities_score must be between 0 and 100 (got {activities_score!r})"
        )

    progress = summary.average_progress
    final_score = round_half_up(
        progress * thresholds.interactive_weight / 100
        + activities_score * thresholds.activities_weight / 100
    )
    virtual = progress >= thresholds.virtual_threshold
    eligibility = CertificateEligibility(
        virtual=virtual,
        complete=virtual and final_score >= thresholds.complete_threshold,
        final_score=final_score,
    )

    CERTIFICATE_EVALUATIONS.labels(outcome=eligibility.tier).inc()
    logger.debug(
        "Certificate evaluated course=%d progress=%d activities=%s -> %s (final=%d)",
        summary.course_id,
        progress,
        activities_score,
        eligibility.tier,
        final_score,
        extra={"course_id": summary.course_id},
    )
    return eligibility


def reevaluate_certificate(
    previous: CertificateEligibility | None,
    summary: CourseProgressSummary,
    activities_score: float,
    thresholds: ThresholdConfig,
) -> CertificateEligibility:
    if previous is None:
        return evaluate_certificate(summary, activities_score, thresholds)

    if not thresholds.allow_retry:
        logger.info(
            "Retry disabled; keeping previous evaluation for course=%d",
            summary.course_id,
            extra={"course_id": summary.course_id},
        )
        return previous

    current = evaluate_certificate(summary, activities_score, thresholds)
    return CertificateEligibility(
        virtual=previous.virtual or current.virtual,
        complete=previous.complete or current.complete,
        final_score=max(previous.final_score, current.final_score),
    )


def newly_granted(
    previous: CertificateEligibility | None, current: CertificateEligibility
) -> bool:
    """True when ``current`` grants a tier that ``previous`` did not."""
    if previous is None:
        return current.virtual or current.complete
    return (current.virtual and not previous.virtual) or (
        current.complete and not previous.complete
    )
