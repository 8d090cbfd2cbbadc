"""
Wide Table Loader

Parses a delimited table with one region column and any number of metric
columns into per-region records, e.g.

    state,Black coal,Per cent renewable generation
    New South Wales,45812.6,29.3
    Victoria,,38.1

Blank, non-numeric and non-finite cells are kept as None ("missing"), which is
never the same thing as a value of 0.
"""

import csv
import io
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping, Optional, Tuple, Union

import pandas as pd

from common import EmptyTableError, LoadError, MissingColumnError, read_text

logger = logging.getLogger(__name__)

DEFAULT_REGION_COLUMN = 'state'


@dataclass(frozen=True)
class RegionTable:
    """Read-only region -> {metric -> value or None} mapping plus ordered metric names."""

    records: Mapping[str, Mapping[str, Optional[float]]]
    metrics: Tuple[str, ...]
    region_column: str = DEFAULT_REGION_COLUMN

    @property
    def regions(self) -> Tuple[str, ...]:
        return tuple(self.records)

    def get(self, region: Optional[str], metric: str) -> Optional[float]:
        """Value for a region/metric pair; None when either is unknown or the cell is missing."""
        if region is None:
            return None
        record = self.records.get(region)
        if record is None:
            return None
        return record.get(metric)

    def values(self, metric: str) -> List[Optional[float]]:
        return [record.get(metric) for record in self.records.values()]

    def __len__(self) -> int:
        return len(self.records)

    def __contains__(self, region: object) -> bool:
        return region in self.records

    def __iter__(self) -> Iterator[str]:
        return iter(self.records)


def _to_value(raw) -> Optional[float]:
    # pd.to_numeric leaves NaN for blanks and junk; infinities are also treated as missing
    if pd.isna(raw):
        return None
    value = float(raw)
    return value if math.isfinite(value) else None


def parse_wide_table(text: str, region_column: str = DEFAULT_REGION_COLUMN,
                     delimiter: str = ',') -> RegionTable:
    """
    Parse wide-format delimited text into a RegionTable.

    Args:
        text: Raw table text, first non-empty line is the header
        region_column: Header naming the region column
        delimiter: Cell delimiter

    Returns:
        RegionTable with one record per non-empty region name

    Raises:
        EmptyTableError: Fewer than two non-empty lines (no data rows)
        MissingColumnError: No header matches region_column
        LoadError: pandas could not parse the text
    """
    lines = [line for line in text.strip().splitlines() if line.strip()]
    if len(lines) < 2:
        raise EmptyTableError("Table appears empty: no data rows below the header")

    # Header row is split by hand; a repeated name keeps its first column
    headers = [cell.strip() for cell in lines[0].split(delimiter)]
    columns: Dict[str, int] = {}
    for position, name in enumerate(headers):
        if name in columns:
            logger.warning(f"Repeated header '{name}' in table; using its first column")
            continue
        columns[name] = position

    if region_column not in columns:
        raise MissingColumnError(f"Table needs a '{region_column}' column")

    metric_names = [name for name in columns if name != region_column]

    try:
        df = pd.read_csv(
            io.StringIO('\n'.join(lines[1:])),
            sep=delimiter,
            header=None,
            names=list(range(len(headers))),
            quoting=csv.QUOTE_NONE,  # quote characters are ordinary cell text
            dtype=str,
            keep_default_na=False,  # '' stays '' so blanks become missing below, not 'NA' strings
            index_col=False,
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise LoadError(f"Error parsing table data: {e}") from e

    # Trim every cell
    df = df.fillna('').astype(str).apply(lambda col: col.str.strip())

    # Rows without a region name cannot be joined to a boundary
    regions = df[columns[region_column]]
    skipped = int((regions == '').sum())
    if skipped:
        logger.debug(f"Skipping {skipped} rows with an empty '{region_column}' value")
    df = df[regions != '']

    numeric = {
        name: pd.to_numeric(df[columns[name]], errors='coerce').tolist() for name in metric_names
    }

    records: Dict[str, Mapping[str, Optional[float]]] = {}
    for position, region in enumerate(df[columns[region_column]]):
        if region in records:
            logger.warning(f"Duplicate region '{region}' in table; keeping the last row")
        records[region] = MappingProxyType(
            {name: _to_value(numeric[name][position]) for name in metric_names}
        )

    logger.info(f"Loaded {len(records)} regions with {len(metric_names)} metrics")
    return RegionTable(
        records=MappingProxyType(records),
        metrics=tuple(metric_names),
        region_column=region_column,
    )


def load_wide_table(source: Union[str, Path], region_column: str = DEFAULT_REGION_COLUMN,
                    delimiter: str = ',') -> RegionTable:
    """Read a table from a URL or path and parse it with parse_wide_table."""
    return parse_wide_table(read_text(source), region_column=region_column, delimiter=delimiter)
