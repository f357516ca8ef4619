"""Broker reference table and sender-based broker detection.

Rules are an ordered tuple: the first rule whose domain or sender fragment
matches wins. Loose fragments such as "xm" or "sbi" can shadow later rules,
so new brokers go at the end unless they must take priority.
"""

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BrokerProfile:
    """How a broker quotes position size, and how to convert it to standard lots."""

    name: str
    unit: str
    multiplier: float  # broker units -> standard lot (1.0 = 100,000 base units)
    description: str


@dataclass(frozen=True)
class BrokerRule:
    """Substring markers identifying a broker's confirmation emails."""

    broker: str
    domains: tuple[str, ...] = ()
    sender_fragments: tuple[str, ...] = ()  # matched against lower-cased display name
    text_markers: tuple[str, ...] = ()  # brand names matched case-sensitively in subject/body


BROKER_PROFILES: tuple[BrokerProfile, ...] = (
    # Japanese brokers quote in 万通貨 (10,000 units)
    BrokerProfile("GMOクリック証券", "万通貨", 0.1, "1万通貨 = 0.1 lot"),
    BrokerProfile("DMM FX", "万通貨", 0.1, "1万通貨 = 0.1 lot"),
    BrokerProfile("SBI FXトレード", "通貨", 0.00001, "100,000通貨 = 1.0 lot"),
    BrokerProfile("外為どっとコム", "万通貨", 0.1, "1万通貨 = 0.1 lot"),
    # International brokers
    BrokerProfile("XM", "Lot", 1.0, "1 Lot = 100,000 units"),
    BrokerProfile("OANDA", "Units", 0.00001, "100,000 units = 1.0 lot"),
    BrokerProfile("FXCM", "K", 0.01, "1K = 1,000 units = 0.01 lot"),
    BrokerProfile("IG証券", "Lot", 1.0, "1 Lot = 100,000 units"),
    BrokerProfile("Exness", "Lot", 1.0, "1 Lot = 100,000 units"),
)

BROKER_RULES: tuple[BrokerRule, ...] = (
    BrokerRule("GMOクリック証券", ("click-sec.com",), ("gmo",), ("GMOクリック証券", "GMO Click")),
    BrokerRule("DMM FX", ("dmm.com",), ("dmm",), ("DMM FX", "DMM.com証券")),
    BrokerRule("SBI FXトレード", ("sbifxt.co.jp",), ("sbi",), ("SBI FXトレード", "SBI FX")),
    BrokerRule("外為どっとコム", ("gaitame.com",), (), ("外為どっとコム",)),
    BrokerRule("XM", ("xm.com",), ("xm",), ("XMTrading",)),
    BrokerRule("OANDA", ("oanda.com",), (), ("OANDA",)),
    BrokerRule("FXCM", ("fxcm.com",), (), ("FXCM",)),
    BrokerRule("IG証券", ("ig.com",), ("ig証券",), ("IG証券",)),
    BrokerRule("Exness", ("exness.com",), ("exness",), ("Exness",)),
)

_PROFILES_BY_NAME = {profile.name: profile for profile in BROKER_PROFILES}


def broker_profile(name: str | None) -> BrokerProfile | None:
    """Look up the lot conversion profile for a broker name."""
    if not name:
        return None
    return _PROFILES_BY_NAME.get(name)


def detect_broker(email: str, sender_name: str | None = None) -> str | None:
    """Map a sender address (and optional display name) to a broker name.

    Returns None for unknown senders; callers fall back to unit-based lot parsing.
    """
    address = (email or "").lower()
    display = (sender_name or "").lower()

    for rule in BROKER_RULES:
        if any(domain in address for domain in rule.domains):
            return rule.broker
        if display and any(fragment in display for fragment in rule.sender_fragments):
            return rule.broker
    logger.debug("No broker rule matches sender %r", email)
    return None


def detect_broker_in_text(text: str) -> str | None:
    """Find a broker by brand name inside the subject or body (forwarded mail)."""
    if not text:
        return None
    for rule in BROKER_RULES:
        if any(marker in text for marker in rule.text_markers):
            return rule.broker
    return None
