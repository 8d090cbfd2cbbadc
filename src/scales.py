"""
Scale bounds, discrete color buckets and aggregates for a single metric.

Values are either finite floats or None (missing). Missing values never take
part in bounds or aggregates and always map to the neutral no-data color.
"""

import math
from dataclasses import dataclass
from typing import Iterable, NamedTuple, Optional, Sequence

from common import is_number
from table_loader import RegionTable

# 10-step orange, light to dark (no near-white)
ORANGE_RAMP = (
    '#FFE0CC', '#FFCC99', '#FFB366', '#FF9933', '#FF851A',
    '#FF7300', '#F56500', '#D95C00', '#B24A00', '#803300',
)

NO_DATA_COLOR = '#dddddd'

MIN_RAMP_LENGTH = 7
MAX_RAMP_LENGTH = 10

QUANTITY = 'quantity'
PERCENTAGE = 'percentage'


@dataclass(frozen=True)
class MetricInfo:
    """Declared display unit and kind of a metric. Quantities are summed, percentages averaged."""

    unit: str = 'GWh'
    kind: str = QUANTITY

    def __post_init__(self):
        if self.kind not in (QUANTITY, PERCENTAGE):
            raise ValueError(f"kind must be '{QUANTITY}' or '{PERCENTAGE}', got '{self.kind}'")

    @property
    def aggregate_label(self) -> str:
        return 'Average' if self.kind == PERCENTAGE else 'Total'


class ScaleBounds(NamedTuple):
    """(min, max) of the finite values of a metric; both None when there are none."""

    min: Optional[float]
    max: Optional[float]

    @property
    def has_data(self) -> bool:
        return self.min is not None and self.max is not None

    @property
    def is_degenerate(self) -> bool:
        return self.has_data and self.min == self.max


NO_DATA_BOUNDS = ScaleBounds(None, None)


def finite_values(values: Iterable[Optional[float]]) -> list:
    return [float(v) for v in values if is_number(v)]


def compute_bounds(table: RegionTable, metric: str) -> ScaleBounds:
    """
    Compute the scale bounds of a metric across all regions.

    Args:
        table: Loaded region records
        metric: Metric name (unknown metrics behave as all-missing)

    Returns:
        ScaleBounds with min <= max, or NO_DATA_BOUNDS if no region has a finite value
    """
    values = finite_values(table.values(metric))
    if not values:
        return NO_DATA_BOUNDS
    return ScaleBounds(min(values), max(values))


def check_ramp(colors: Sequence[str], no_data_color: str = NO_DATA_COLOR) -> tuple:
    """Validate a color ramp and return it as a tuple."""
    ramp = tuple(colors)
    if not MIN_RAMP_LENGTH <= len(ramp) <= MAX_RAMP_LENGTH:
        raise ValueError(
            f"Color ramp needs {MIN_RAMP_LENGTH} to {MAX_RAMP_LENGTH} colors, got {len(ramp)}"
        )
    if no_data_color.lower() in (c.lower() for c in ramp):
        raise ValueError(f"No-data color {no_data_color} must not be part of the ramp")
    return ramp


def bucket_index(value: Optional[float], bounds: ScaleBounds, ramp_length: int) -> Optional[int]:
    """
    Discrete bucket of a value on a linear scale.

    Returns None for missing/non-finite values or bounds without data. A
    degenerate range (min == max) puts everything in the last bucket.
    """
    if not is_number(value) or not bounds.has_data:
        return None
    if bounds.is_degenerate:
        return ramp_length - 1

    t = (value - bounds.min) / (bounds.max - bounds.min)
    t = max(0.0, min(1.0, t))
    return min(ramp_length - 1, int(math.floor(t * ramp_length)))


def color_for(value: Optional[float], bounds: ScaleBounds, ramp: Sequence[str] = ORANGE_RAMP,
              no_data_color: str = NO_DATA_COLOR) -> str:
    """
    Map a value to a ramp color, or to the neutral color when it has no data.

    Args:
        value: Metric value, None for missing
        bounds: Current scale bounds of the active metric
        ramp: Ordered light-to-dark colors
        no_data_color: Color used for missing values

    Returns:
        Hex color string
    """
    idx = bucket_index(value, bounds, len(ramp))
    if idx is None:
        return no_data_color
    return ramp[idx]


def aggregate(table: RegionTable, metric: str, info: MetricInfo) -> Optional[float]:
    """Sum (quantity) or mean (percentage) of the finite values; None if there are none."""
    values = finite_values(table.values(metric))
    if not values:
        return None
    total = math.fsum(values)
    if info.kind == PERCENTAGE:
        return total / len(values)
    return total
