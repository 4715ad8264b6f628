"""Tabular correlation — join a two-column CSV onto feature properties.

Row 0 of the table names the feature property to join on and the label
for the joined value; each later row maps a feature key to a value.
Values that are integers in 1..10 also choose a fill/outline colour from
a fixed decile ramp.
"""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field

from geodata.config import settings
from geodata.features import Feature
from geodata.style import Color

logger = logging.getLogger(__name__)

# Index 0 is unused so a decile value indexes its colour directly
DECILE_COLORS = (
    None,
    "#990000",
    "#CC0000",
    "#FF0000",
    "#FF9900",
    "#FFCC66",
    "#CCFFFF",
    "#99CCCC",
    "#0099CC",
    "#006699",
    "#003399",
)

CONSTRAINT_COLOR = "yellow"


@dataclass
class JoinTable:
    """Parsed join CSV: ``join_key`` property -> ``value_label`` values."""

    join_key: str
    value_label: str
    values: dict = field(default_factory=dict)
    rows: list = field(default_factory=list)

    @classmethod
    def from_rows(cls, rows: list) -> JoinTable:
        """Build from an array of rows; row 0 is ``[join_key, value_label]``.

        Raises:
            ValueError: If the header row has fewer than two columns.
        """
        if not rows or len(rows[0]) < 2:
            raise ValueError("Join table needs a header row with two columns")
        header = rows[0]
        table = cls(
            join_key=str(header[0]).strip(),
            value_label=str(header[1]).strip(),
            rows=[list(r) for r in rows],
        )
        for row in rows[1:]:
            if len(row) < 2:
                continue
            table.values[_normalize_key(row[0])] = _coerce_value(row[1])
        return table

    def lookup(self, key):
        """Joined value for a feature key, or None."""
        if key is None:
            return None
        return self.values.get(_normalize_key(key))

    def __len__(self) -> int:
        return len(self.values)


@dataclass
class Constraint:
    """Inclusive numeric range a property must fall in."""

    name: str
    minimum: float = 0
    maximum: float = 0


def parse_join_table(csv_string: str) -> JoinTable:
    """Parse CSV text into a JoinTable. Blank lines are ignored."""
    reader = csv.reader(io.StringIO(csv_string))
    rows = [row for row in reader if any(cell.strip() for cell in row)]
    return JoinTable.from_rows(rows)


def _coerce_value(value):
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return float(text)
        except ValueError:
            return text
    return value


def _normalize_key(key) -> str:
    value = _coerce_value(key)
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value)


def decile_of(value) -> int | None:
    """The value as an int in 1..10, or None if it is not one."""
    if isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, int) and 1 <= value <= 10:
        return value
    return None


def correlate(features: list[Feature], table: JoinTable) -> int:
    """Write joined values (and decile colours) onto matching features.

    Returns:
        Number of features that matched a row of the table.
    """
    matched = 0
    for feature in features:
        value = table.lookup(feature.properties.get(table.join_key))
        if value is None:
            continue
        matched += 1
        feature.properties[table.value_label] = value

        decile = decile_of(value)
        if decile is None:
            continue
        color = Color.from_css(DECILE_COLORS[decile], alpha=settings.join_color_alpha).to_css()
        style = feature.style if feature.style is not None else {}

        geometry_type = feature.geometry.type
        if geometry_type == "Polygon":
            style.update(outline=True, outlineColor=color, fill=True, fillColor=color)
        else:
            logger.debug(
                f"No polygon for {table.join_key}={feature.properties.get(table.join_key)}"
            )
        if geometry_type == "LineString":
            style["strokeColor"] = color
        feature.style = style

    logger.debug(f"Correlated {matched}/{len(features)} features on {table.join_key}")
    return matched


def apply_constraints(features: list[Feature], constraints: list[Constraint]) -> int:
    """Highlight polygons whose properties satisfy every constraint.

    Non-matching polygons have fill and outline switched off.

    Returns:
        Number of highlighted polygons.
    """
    color = Color.from_css(CONSTRAINT_COLOR, alpha=0.5).to_css()
    highlighted = 0
    for feature in features:
        if feature.geometry.type != "Polygon":
            continue
        matches = all(
            c.minimum <= _as_number(feature.properties.get(c.name)) <= c.maximum
            for c in constraints
        )
        style = feature.style if feature.style is not None else {}
        if matches:
            highlighted += 1
            style.update(fill=True, outline=True, fillColor=color, outlineColor=color)
        else:
            style.update(fill=False, outline=False)
        feature.style = style
    return highlighted


def _as_number(value) -> float:
    value = _coerce_value(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    return 0
