from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Unit:
    course_id: int
    unit_id: int  # 1-indexed position within the course
    name: str


@dataclass(frozen=True, slots=True)
class Course:
    id: int
    title: str
    units: tuple[Unit, ...] = ()

    @staticmethod
    def new(*, id: int, title: str, unit_names: list[str] | tuple[str, ...] = ()) -> Course:
        return Course(
            id=id,
            title=title,
            units=tuple(
                Unit(course_id=id, unit_id=position, name=name)
                for position, name in enumerate(unit_names, start=1)
            ),
        )

    @property
    def unit_ids(self) -> frozenset[int]:
        return frozenset(u.unit_id for u in self.units)
