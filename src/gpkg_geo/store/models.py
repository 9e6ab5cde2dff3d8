"""
Pydantic models for rows of the GeoPackage system catalog.
"""

import re
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, model_validator


class SpatialReference(BaseModel):
    """A gpkg_spatial_ref_sys row."""

    model_config = ConfigDict(frozen=True)

    srs_id: int
    srs_name: str
    organization: str
    organization_coordsys_id: int
    definition: str
    description: Optional[str] = None


class ColumnConstraint(BaseModel):
    """
    A named validation rule from gpkg_data_column_constraints.

    range: numeric interval, each end optional and inclusive by default.
    enum:  one of ``values``.
    glob:  matches ``pattern`` (SQLite GLOB semantics, case sensitive).
    """

    model_config = ConfigDict(frozen=True)

    name: str
    constraint_type: Literal["range", "enum", "glob"]
    values: tuple[str, ...] = ()
    pattern: Optional[str] = None
    min: Optional[float] = None
    min_inclusive: bool = True
    max: Optional[float] = None
    max_inclusive: bool = True
    description: Optional[str] = None

    @model_validator(mode="after")
    def _check_kind(self):
        if self.constraint_type == "enum" and not self.values:
            raise ValueError(f"enum constraint {self.name} needs at least one value")
        if self.constraint_type == "glob" and not self.pattern:
            raise ValueError(f"glob constraint {self.name} needs a pattern")
        if (
            self.constraint_type == "range"
            and self.min is not None
            and self.max is not None
            and self.min > self.max
        ):
            raise ValueError(f"range constraint {self.name} has min > max")
        return self

    def allows(self, value) -> bool:
        """Check a value against this constraint. NULLs always pass."""
        if value is None:
            return True

        if self.constraint_type == "enum":
            return str(value) in self.values

        if self.constraint_type == "glob":
            regex = glob_to_regex(self.pattern)
            return re.fullmatch(regex, str(value), re.DOTALL) is not None

        try:
            number = float(value)
        except (TypeError, ValueError):
            return False
        if self.min is not None:
            if number < self.min or (number == self.min and not self.min_inclusive):
                return False
        if self.max is not None:
            if number > self.max or (number == self.max and not self.max_inclusive):
                return False
        return True


def glob_to_regex(pattern: str) -> str:
    """
    Translate an SQLite GLOB pattern to a regular expression.

    ``*`` and ``?`` are wildcards, ``[...]`` is a character class with
    ``a-z`` ranges, ``[^...]`` negates it and a leading ``]`` is a member.
    """
    out = []
    i, n = 0, len(pattern)
    while i < n:
        c = pattern[i]
        if c == "*":
            out.append(".*")
        elif c == "?":
            out.append(".")
        elif c == "[":
            j = i + 1
            negate = j < n and pattern[j] == "^"
            if negate:
                j += 1
            start = j
            if j < n and pattern[j] == "]":
                j += 1
            while j < n and pattern[j] != "]":
                j += 1
            if j >= n:
                # Unterminated class never matches
                return "(?!)"
            out.append(_character_class(pattern[start:j], negate))
            i = j
        else:
            out.append(re.escape(c))
        i += 1
    return "".join(out)


def _character_class(members: str, negate: bool) -> str:
    parts = []
    k = 0
    while k < len(members):
        if k + 2 < len(members) and members[k + 1] == "-":
            low, high = members[k], members[k + 2]
            if low <= high:
                parts.append(f"{re.escape(low)}-{re.escape(high)}")
            k += 3
        else:
            parts.append(re.escape(members[k]))
            k += 1
    if not parts:
        return "." if negate else "(?!)"
    return f"[{'^' if negate else ''}{''.join(parts)}]"
