import json
import logging
import math
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Optional, Union

import requests

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'

logger = logging.getLogger(__name__)


class LoadError(ValueError):
    """Raised when a table or boundary source cannot be turned into map data."""


class MissingColumnError(LoadError):
    """The table has no header matching the region column."""


class EmptyTableError(LoadError):
    """The table has a header row but no data rows."""


def setup_logging(verbose: bool = False) -> None:
    """Configure root logging for scripts that build maps."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)


def _is_url(source: Union[str, Path]) -> bool:
    return isinstance(source, str) and source.lower().startswith(('http://', 'https://'))


def read_text(source: Union[str, Path]) -> str:
    """
    Reads a text resource from a URL or a local file.

    Args:
        source: An http(s) URL or a filesystem path.

    Returns:
        The decoded text content.

    Raises:
        LoadError: If the download fails or the file cannot be read.
    """
    if _is_url(source):
        try:
            response = requests.get(source)
            response.raise_for_status()  # Raise an exception for bad status codes (4xx or 5xx)
            logger.info(f"Downloaded {source} ({len(response.content)} bytes)")
            return response.content.decode('utf-8')
        except requests.exceptions.RequestException as e:
            raise LoadError(f"Error downloading file from {source}: {e}") from e
        except UnicodeDecodeError as e:
            raise LoadError(f"Could not decode {source} as UTF-8: {e}") from e

    path = Path(source)
    try:
        with open(path, 'r', encoding='utf-8') as f:
            text = f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise LoadError(f"Could not read {path}: {e}") from e
    logger.info(f"Read {path} ({len(text)} characters)")
    return text


def load_geojson(source: Union[str, Path]) -> dict:
    """
    Load and parse a GeoJSON FeatureCollection.

    Raises:
        LoadError: If the source cannot be read, is not JSON, or is not a FeatureCollection.
    """
    text = read_text(source)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise LoadError(f"Could not parse GeoJSON from {source}: {e}") from e

    if not isinstance(data, dict) or data.get('type') != 'FeatureCollection':
        raise LoadError(f"{source} is not a GeoJSON FeatureCollection")
    if not isinstance(data.get('features'), list):
        raise LoadError(f"{source} has no 'features' list")

    logger.info(f"Loaded {len(data['features'])} features from {source}")
    return data


def is_number(value: Optional[float]) -> bool:
    """True for finite numbers; False for None (missing), NaN and infinities."""
    if value is None or isinstance(value, bool):
        return False
    try:
        return math.isfinite(value)
    except TypeError:
        return False


def number_format(value: float, decimals: int = 1) -> str:
    """
    Format a number with thousands separators and at most `decimals` fraction digits.

    Matches en-AU display, e.g. 45812.63 -> '45,812.6', 100.0 -> '100'. Ties round
    away from zero (12.25 -> '12.3') on the shortest decimal form of the float.
    """
    rounded = Decimal(str(value)).quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_HALF_UP)
    text = f"{rounded:,.{decimals}f}"
    if '.' in text:
        text = text.rstrip('0').rstrip('.')
    if text == '-0':
        text = '0'
    return text


def value_formatter(value: Optional[float], unit: str) -> str:
    """
    Format a metric value with its unit, or 'No data' when the value is missing.

    Args:
        value: Metric value, or None for missing
        unit: Unit suffix (e.g. 'GWh', '%')

    Returns:
        Formatted string such as '1,234.5 GWh'
    """
    if not is_number(value):
        return "No data"
    return f"{number_format(value)}\u00a0{unit}"  # NBSP before unit
