"""Currency pair vocabulary and normalization.

Pairs are stored as plain 6-letter codes (USDJPY). Emails spell them in many
ways: "USD/JPY", "usd jpy", "USD-JPY". All collapse to the same code.
"""

import re

# Major currency pairs (most commonly traded)
MAJOR_PAIRS: tuple[str, ...] = (
    "USDJPY",
    "EURJPY",
    "GBPJPY",
    "AUDJPY",
    "EURUSD",
    "GBPUSD",
    "AUDUSD",
    "NZDUSD",
)

MINOR_PAIRS: tuple[str, ...] = (
    "CHFJPY",
    "CADJPY",
    "NZDJPY",
    "ZARJPY",
    "TRYJPY",
    "MXNJPY",
    "EURGBP",
    "EURAUD",
    "EURNZD",
    "EURCHF",
    "EURCAD",
    "GBPAUD",
    "GBPNZD",
    "GBPCHF",
    "GBPCAD",
    "AUDNZD",
    "AUDCAD",
    "AUDCHF",
    "NZDCAD",
    "NZDCHF",
    "CADCHF",
    "USDCHF",
    "USDCAD",
    "USDZAR",
    "USDTRY",
    "USDMXN",
)

ALL_PAIRS: tuple[str, ...] = MAJOR_PAIRS + MINOR_PAIRS

_SEPARATORS = re.compile(r"[\s/\-_.]")


def normalize_currency_pair(value: str) -> str:
    """Collapse any spelling of a pair to its 6-letter upper-case code.

    Unknown pairs are still normalized and returned; users trade exotics.
    """
    return _SEPARATORS.sub("", value).upper()


def format_currency_pair(pair: str, fmt: str = "plain") -> str:
    """Render a pair as "USDJPY" (plain) or "USD/JPY" (slash)."""
    normalized = normalize_currency_pair(pair)
    if fmt == "slash" and len(normalized) == 6:
        return f"{normalized[:3]}/{normalized[3:]}"
    return normalized


def is_major_pair(pair: str) -> bool:
    return normalize_currency_pair(pair) in MAJOR_PAIRS


def is_minor_pair(pair: str) -> bool:
    return normalize_currency_pair(pair) in MINOR_PAIRS


def get_pair_suggestions(text: str) -> list[str]:
    """Known pairs containing the typed fragment, or the majors if none match."""
    if not text:
        return list(MAJOR_PAIRS)
    fragment = normalize_currency_pair(text)
    suggestions = [pair for pair in ALL_PAIRS if fragment in pair]
    return suggestions or list(MAJOR_PAIRS)
