"""Split an object or file into multipart parts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

from ..consts import MAX_TASK_NUM
from ..errors import TosClientError
from ..validation import validate_part_count, validate_part_size

__all__ = ["PartPlan", "plan_parts", "clamp_task_num"]


@dataclass(frozen=True)
class PartPlan:
    part_number: int
    offset: int
    size: int

    @property
    def end(self) -> int:
        """Inclusive last byte of the part."""
        return self.offset + self.size - 1


def plan_parts(total_size: int, part_size: int) -> List[PartPlan]:
    """Return ``ceil(total_size / part_size)`` parts; the last may be shorter.

    ``part_size`` ``0`` means 20 MiB.  An empty object has no parts.

    >>> [p.size for p in plan_parts(12 << 20, 5 << 20)] == [5 << 20, 5 << 20, 2 << 20]
    True
    """
    if total_size < 0:
        raise TosClientError(f"tos: invalid object size {total_size}")
    part_size = validate_part_size(part_size)
    count = -(-total_size // part_size)
    validate_part_count(count)
    parts: List[PartPlan] = []
    for index in range(count):
        offset = index * part_size
        parts.append(PartPlan(index + 1, offset, min(part_size, total_size - offset)))
    return parts


def clamp_task_num(task_num: int) -> int:
    return max(1, min(task_num, MAX_TASK_NUM))
