from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class CertificateEligibility:
    """Dual-tier certificate decision for one course.

    virtual:  interactive progress reached the virtual threshold
    complete: virtual, and the weighted final score reached the complete threshold
    """

    virtual: bool = False
    complete: bool = False
    final_score: int = 0

    @property
    def tier(self) -> str:
        # none|virtual|complete
        if self.complete:
            return "complete"
        if self.virtual:
            return "virtual"
        return "none"
