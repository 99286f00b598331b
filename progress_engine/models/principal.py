from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Principal:
    """The learner a request acts for.

    Authentication happens upstream (gateway or identity service); by the
    time a request reaches this service the caller's id is carried in the
    X-User-Id header and trusted as-is.
    """

    user_id: str
