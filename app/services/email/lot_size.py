"""Lot size normalization across broker-specific quantity units.

Everything is stored as a standard lot: 1.0 lot = 100,000 units of the base
currency. Japanese brokers quote 万通貨 (10,000 units), OANDA raw units, FXCM
thousands (K), XM and IG lots.

These helpers never raise. An unrecognized unit is treated as if the value
were already in standard lots.
"""

import logging
import math
import re
from dataclasses import dataclass
from typing import Literal

from app.services.email.brokers import broker_profile

logger = logging.getLogger(__name__)

UNITS_PER_LOT = 100_000

LotFormat = Literal["standard", "units", "japanese", "broker"]


@dataclass(frozen=True)
class LotSize:
    """A lot size as quoted in the email plus its standard-lot equivalent."""

    value: float
    unit: str
    standard_lot: float
    broker: str | None = None


def _unit_key(unit: str) -> str:
    return (unit or "").strip().lower()


def _units_match(unit: str, broker_unit: str) -> bool:
    key = _unit_key(unit)
    target = _unit_key(broker_unit)
    if key == target:
        return True
    # "unit" / "units" and "lot" / "lots" are the same unit
    return key.rstrip("s") == target.rstrip("s")


def _multiplier_for_unit(unit: str) -> float | None:
    key = _unit_key(unit)
    if not key:
        return None
    if "万通貨" in key:
        return 0.1
    if key in ("lot", "lots", "ロット"):
        return 1.0
    if key == "k":
        return 0.01
    if "通貨" in key or key in ("unit", "units"):
        return 0.00001
    return None


def convert_to_standard_lot(value: float, unit: str, broker: str | None = None) -> float:
    """Convert a broker quantity into standard lots.

    Resolution order:
    1. the broker's registered multiplier, when the unit is blank or is the
       broker's own unit (an explicit, different unit in the text wins)
    2. the unit vocabulary (万通貨, Lot, K, units/通貨)
    3. identity
    """
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(amount):
        return 0.0

    profile = broker_profile(broker)
    if profile is not None and (not _unit_key(unit) or _units_match(unit, profile.unit)):
        return amount * profile.multiplier

    multiplier = _multiplier_for_unit(unit)
    if multiplier is not None:
        return amount * multiplier

    if _unit_key(unit):
        logger.debug("Unrecognized lot unit %r, keeping value as standard lots", unit)
    return amount


def _to_float(raw: str) -> float | None:
    try:
        return float(raw.replace(",", ""))
    except ValueError:
        return None


# Ordered most specific first. Each entry: (pattern, unit label or None to use group 2).
_LOT_PATTERNS: tuple[tuple[re.Pattern, str | None], ...] = (
    # "10万通貨"
    (re.compile(r"(\d+(?:\.\d+)?)[ \t]*万通貨"), "万通貨"),
    # "1.5 Lot", "0.10 lots", "2ロット"
    (re.compile(r"(\d+(?:\.\d+)?)[ \t]*(?:lots?\b|ロット)", re.IGNORECASE), "Lot"),
    # "100K", "100 k"
    (re.compile(r"(\d+(?:\.\d+)?)[ \t]*K\b", re.IGNORECASE), "K"),
    # "100000 units", "100,000通貨"
    (re.compile(r"(\d+(?:,\d{3})*(?:\.\d+)?)[ \t]*(units?\b|通貨(?!ペア))", re.IGNORECASE), None),
)

# Unitless quantity behind a label ("Volume: 0.50", "取引数量: 10"); relies on the broker profile.
_LABELLED_QUANTITY = re.compile(
    r"(?:volume|quantity|size|lots?|約定数量|取引数量|注文数量|数量)[ \t]*[:：=]?[ \t]*(\d+(?:,\d{3})*(?:\.\d+)?)",
    re.IGNORECASE,
)


def parse_lot_size(text: str, broker: str | None = None) -> LotSize | None:
    """Find the first lot-size phrase in text and convert it to standard lots."""
    if not text:
        return None

    for pattern, unit in _LOT_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        value = _to_float(match.group(1))
        if value is None:
            continue
        if unit is None:
            unit = "Units" if "unit" in match.group(2).lower() else "通貨"
        return LotSize(
            value=value,
            unit=unit,
            standard_lot=convert_to_standard_lot(value, unit, broker),
            broker=broker,
        )

    match = _LABELLED_QUANTITY.search(text)
    if match:
        value = _to_float(match.group(1))
        if value is not None:
            profile = broker_profile(broker)
            unit = profile.unit if profile else ""
            return LotSize(
                value=value,
                unit=unit,
                standard_lot=convert_to_standard_lot(value, unit, broker),
                broker=broker,
            )

    return None


def _trim(number: float, decimals: int) -> str:
    return f"{number:.{decimals}f}".rstrip("0").rstrip(".")


def format_lot_size(standard_lot: float, fmt: LotFormat = "standard", broker: str | None = None) -> str:
    """Render a standard lot for display.

    - standard: "1.00 Lot"
    - units:    "100,000 units"
    - japanese: "10.0万通貨"
    - broker:   in the broker's own unit ("10万通貨" for GMO, "100K" for FXCM);
                falls back to standard when the broker is unknown
    """
    if fmt == "units":
        return f"{standard_lot * UNITS_PER_LOT:,.0f} units"
    if fmt == "japanese":
        return f"{standard_lot * 10:.1f}万通貨"
    if fmt == "broker":
        profile = broker_profile(broker)
        if profile is not None and profile.multiplier:
            quantity = standard_lot / profile.multiplier
            if profile.unit == "K":
                return f"{_trim(quantity, 2)}K"
            if profile.unit in ("Units", "通貨"):
                separator = " " if profile.unit == "Units" else ""
                return f"{quantity:,.0f}{separator}{profile.unit}"
            if profile.unit == "万通貨":
                return f"{_trim(quantity, 2)}万通貨"
            return f"{quantity:.2f} {profile.unit}"
    return f"{standard_lot:.2f} Lot"
