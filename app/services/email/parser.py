"""Trade confirmation email parser.

Broker emails are semi-structured free text from many senders, in English and
Japanese, plain or HTML. Each trade field is extracted independently by an
ordered chain of strategies (most specific first); the first strategy that
returns a value wins and a failed field never affects the others.

A trade is only produced when a currency pair and at least one price (entry or
exit) were found. Everything else is optional.
"""

import html
import logging
import re
import unicodedata
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import TypeVar

from app.config import settings
from app.services.email.brokers import detect_broker, detect_broker_in_text
from app.services.email.lot_size import LotSize, parse_lot_size
from app.services.email.pairs import ALL_PAIRS, normalize_currency_pair
from app.services.email.sessions import current_timestamp, detect_market_session, parse_timestamp

logger = logging.getLogger(__name__)

T = TypeVar("T")

BUY = "BUY"
SELL = "SELL"


@dataclass
class ParsedTrade:
    """Structured trade extracted from one confirmation email."""

    pair: str  # normalized 6-letter code
    direction: str  # BUY, SELL
    entry_price: float | None
    entry_time: str  # ISO-8601 with offset
    timezone: str
    exit_price: float | None = None
    exit_time: str | None = None
    stop_loss: float | None = None
    take_profit: float | None = None
    lot_size: float | None = None  # standard lots
    lot_size_raw: LotSize | None = None
    pnl_amount: float | None = None
    pnl_pips: float | None = None
    pnl_currency: str | None = None
    pnl_source: str | None = None  # "email" when taken from the message
    broker: str | None = None
    session: str | None = None
    is_verified: bool = True
    notes: str = ""
    tags: list[str] = field(default_factory=list)
    original_email_id: str | None = None

    @property
    def is_settlement(self) -> bool:
        """Exit-only confirmation (position closed, no opening price quoted)."""
        return self.exit_price is not None and self.entry_price is None


@dataclass
class _Document:
    """Normalized email text shared by all field strategies."""

    text: str
    timezone: str
    pair_span: tuple[int, int] | None = None


Strategy = Callable[[_Document], T | None]


def _first(strategies: Sequence[Strategy], doc: _Document) -> T | None:
    for strategy in strategies:
        value = strategy(doc)
        if value is not None:
            return value
    return None


# ---------- text preparation ----------

_HTML_HINT = re.compile(r"<\s*/?\s*(?:html|head|body|div|p|br|table|tr|td|th|span|font|a|b|strong|li)\b[^>]*>", re.I)
_HTML_BLOCK_BREAK = re.compile(r"<\s*(?:br|/p|/div|/tr|/li|/h\d|/table)\b[^>]*>", re.I)
_HTML_SCRIPT = re.compile(r"<(script|style)\b.*?</\1\s*>", re.I | re.S)
_HTML_TAG = re.compile(r"<[^>]*>")
_HTML_UNTERMINATED = re.compile(r"<[^>]*$")


def looks_like_html(text: str) -> bool:
    return bool(text) and _HTML_HINT.search(text) is not None


def strip_html(text: str) -> str:
    """Best-effort tag removal. Not an HTML parser; malformed markup stays noisy."""
    text = _HTML_SCRIPT.sub(" ", text)
    text = _HTML_BLOCK_BREAK.sub("\n", text)
    text = _HTML_TAG.sub(" ", text)
    text = _HTML_UNTERMINATED.sub(" ", text)
    return html.unescape(text)


def prepare_text(subject: str, body: str) -> str:
    """Subject and body as one NFKC-normalized plain-text document."""
    body = body or ""
    if looks_like_html(body):
        body = strip_html(body)
    text = f"{subject or ''}\n{body}".replace("\r\n", "\n").replace("\r", "\n")
    # Full-width digits, colons and @ become ASCII
    return unicodedata.normalize("NFKC", text)


def _line_prefix(text: str, pos: int) -> str:
    return text[text.rfind("\n", 0, pos) + 1:pos]


# ---------- numbers ----------

_NUMBER = r"(\d[\d,.]*\d|\d)"
_DATE_OR_TIME_TAIL = re.compile(r"[-/年:]\d")
_MINUS_SIGNS = "-−▲△"


def _to_number(text: str, match: re.Match, group: int | str = 1) -> float | None:
    """Float value of a captured numeric token; None for malformed tokens and dates."""
    if _DATE_OR_TIME_TAIL.match(text, match.end(group)):
        return None
    raw = match.group(group).replace(",", "")
    try:
        return float(raw)
    except ValueError:
        logger.debug("Skipping malformed number %r", match.group(group))
        return None


def _labelled_number(
    label: str,
    reject_before: re.Pattern | None = None,
    reject_after: re.Pattern | None = None,
) -> Strategy:
    """Strategy: first valid number directly after a label."""
    pattern = re.compile(rf"(?:{label})\s*(?:[:=]|は)?\s*(?:[¥$€£]\s*)?{_NUMBER}", re.I)

    def strategy(doc: _Document) -> float | None:
        for match in pattern.finditer(doc.text):
            if reject_before is not None and reject_before.search(_line_prefix(doc.text, match.start())):
                continue
            if reject_after is not None and reject_after.match(doc.text, match.end()):
                continue
            value = _to_number(doc.text, match)
            if value is not None:
                return value
        return None

    return strategy


# ---------- pair ----------

_PAIR_TOKEN = re.compile(
    r"(?<![A-Za-z])(?:"
    + "|".join(rf"{pair[:3]}[\s/\-_.]?{pair[3:]}" for pair in ALL_PAIRS)
    + r")(?![A-Za-z])",
    re.I,
)

_JAPANESE_CURRENCIES = {
    "ニュージーランドドル": "NZD",
    "南アフリカランド": "ZAR",
    "スイスフラン": "CHF",
    "メキシコペソ": "MXN",
    "カナダドル": "CAD",
    "トルコリラ": "TRY",
    "南アランド": "ZAR",
    "米ドル": "USD",
    "豪ドル": "AUD",
    "NZドル": "NZD",
    "ユーロ": "EUR",
    "ポンド": "GBP",
    "ドル": "USD",
    "円": "JPY",
}
# Longest names first so "米ドル" is not read as "ドル"
_JAPANESE_NAME = "|".join(sorted(map(re.escape, _JAPANESE_CURRENCIES), key=len, reverse=True))
_JAPANESE_PAIR = re.compile(rf"({_JAPANESE_NAME})[ \t]*/?[ \t]*({_JAPANESE_NAME})")

_LABELLED_SYMBOL = re.compile(
    r"(?:\bsymbol|\bpair|\binstrument|銘柄|通貨ペア)\s*[:=]?\s*([A-Za-z]{3}[\s/\-_.]?[A-Za-z]{3})(?![A-Za-z])",
    re.I,
)


def _known_pair(doc: _Document) -> tuple[str, tuple[int, int]] | None:
    match = _PAIR_TOKEN.search(doc.text)
    if not match:
        return None
    return normalize_currency_pair(match.group(0)), match.span()


def _japanese_pair(doc: _Document) -> tuple[str, tuple[int, int]] | None:
    for match in _JAPANESE_PAIR.finditer(doc.text):
        base = _JAPANESE_CURRENCIES[match.group(1)]
        quote = _JAPANESE_CURRENCIES[match.group(2)]
        if base != quote:
            return base + quote, match.span()
    return None


def _labelled_symbol(doc: _Document) -> tuple[str, tuple[int, int]] | None:
    match = _LABELLED_SYMBOL.search(doc.text)
    if not match:
        return None
    pair = normalize_currency_pair(match.group(1))
    if len(pair) != 6 or not pair.isalpha():
        return None
    return pair, match.span(1)


PAIR_STRATEGIES: tuple[Strategy, ...] = (_known_pair, _japanese_pair, _labelled_symbol)


# ---------- direction ----------

_DIRECTION_LABEL = re.compile(
    r"(?:\b(?:order\s*type|type|side|direction|action)\b|売買区分|売買|タイプ|区分|方向)"
    r"\s*[:=]?\s*(?:新規|決済)?\s*(buy|sell|long|short|買い?|売り?|ロング|ショート)",
    re.I,
)
_DIRECTION_WORD = re.compile(
    r"(?P<buy>\bbuy\b|\bbought\b|\blong\b|買い?|ロング)|(?P<sell>\bsell\b|\bsold\b|\bshort\b|売り?|ショート)",
    re.I,
)
_PROXIMITY_CHARS = 40


def _direction_of(word: str) -> str:
    word = word.lower()
    if word.startswith(("buy", "bought", "long", "買", "ロング")):
        return BUY
    return SELL


def _keyword_text(text: str) -> str:
    # "売買" (buy/sell) is a label, not a direction
    return text.replace("売買", "  ")


def _labelled_direction(doc: _Document) -> str | None:
    match = _DIRECTION_LABEL.search(doc.text)
    return _direction_of(match.group(1)) if match else None


def _direction_near_pair(doc: _Document) -> str | None:
    if doc.pair_span is None:
        return None
    start, end = doc.pair_span
    lo = max(0, start - _PROXIMITY_CHARS)
    window = _keyword_text(doc.text[lo:end + _PROXIMITY_CHARS])
    best: tuple[int, str] | None = None
    for match in _DIRECTION_WORD.finditer(window):
        word_start, word_end = match.start() + lo, match.end() + lo
        distance = start - word_end if word_end <= start else max(0, word_start - end)
        direction = BUY if match.group("buy") else SELL
        if best is None or distance < best[0]:
            best = (distance, direction)
    return best[1] if best else None


def _direction_anywhere(doc: _Document) -> str | None:
    match = _DIRECTION_WORD.search(_keyword_text(doc.text))
    if not match:
        return None
    return BUY if match.group("buy") else SELL


DIRECTION_STRATEGIES: tuple[Strategy, ...] = (
    _labelled_direction,
    _direction_near_pair,
    _direction_anywhere,
)


# ---------- prices ----------

# Japanese labels are compounds ("決済約定日時"), so the marker may sit anywhere in the word
_NOT_ENTRY = re.compile(
    r"(?:close|closing|exit|settle(?:ment)?|stop|take|limit)\s*$|(?:決済|損切|利確|逆指値|指値)\S*$",
    re.I,
)
# SL/TP given as a distance rather than a price
_PIPS_AFTER = re.compile(r"\s*pips?\b", re.I)

ENTRY_PRICE_STRATEGIES: tuple[Strategy, ...] = (
    _labelled_number(r"\b(?:entry|open|opening)(?:\s*(?:price|rate))?\b"),
    _labelled_number(r"新規約定価格|新規約定レート|約定価格|約定レート|約定値|建値|エントリー価格|エントリー", _NOT_ENTRY),
    _labelled_number(r"\b(?:price|rate)\b|価格|レート", _NOT_ENTRY),
    _labelled_number(r"@|\bat\b"),
)

EXIT_PRICE_STRATEGIES: tuple[Strategy, ...] = (
    _labelled_number(r"\b(?:exit|close|closing)(?:\s*(?:price|rate))?\b"),
    _labelled_number(r"決済約定価格|決済約定レート|決済価格|決済レート|決済"),
)

STOP_LOSS_STRATEGIES: tuple[Strategy, ...] = (
    _labelled_number(r"\b(?:stop[\s-]*loss|s/l|sl)\b", reject_after=_PIPS_AFTER),
    _labelled_number(r"損切り?価格|損切り?|逆指値", reject_after=_PIPS_AFTER),
)

TAKE_PROFIT_STRATEGIES: tuple[Strategy, ...] = (
    _labelled_number(r"\b(?:take[\s-]*profit|t/p|tp)\b", reject_after=_PIPS_AFTER),
    _labelled_number(r"利確価格|利確|利益確定", reject_after=_PIPS_AFTER),
)


# ---------- profit / loss ----------

_PNL_AMOUNT = re.compile(
    r"(?:profit\s*/\s*loss|net\s*profit|p\s*&\s*l|p/l|pnl|profit|loss|実現損益|決済損益|売買損益|損益)"
    r"\s*[:=]?\s*(?P<sign>[+\-−▲△])?\s*(?P<prefix>[¥$€£]|JPY|USD|EUR)?\s*(?P<sign2>[+\-−])?\s*"
    r"(?P<number>\d[\d,]*(?:\.\d+)?)\s*(?P<suffix>円|JPY|USD|EUR|ドル|ユーロ)?",
    re.I,
)
_NOT_PNL = re.compile(r"(?:take|stop)[\s-]*$", re.I)
# Pips on a stop-loss / take-profit line are a planned distance, not a result
_SL_TP_LINE = re.compile(r"stop|take|\bs/?l\b|\bt/?p\b|損切|利確|利益確定|逆指値", re.I)
_PIPS_SUFFIX = re.compile(r"(?P<sign>[+\-−▲△])?\s*(?P<number>\d+(?:\.\d+)?)\s*pips?\b", re.I)
_PIPS_LABEL = re.compile(r"\bpips?\s*[:=]?\s*(?P<sign>[+\-−▲△])?\s*(?P<number>\d+(?:\.\d+)?)", re.I)

_CURRENCY_CODES = {
    "¥": "JPY", "円": "JPY", "JPY": "JPY",
    "$": "USD", "ドル": "USD", "USD": "USD",
    "€": "EUR", "ユーロ": "EUR", "EUR": "EUR",
    "£": "GBP",
}


def _signed(match: re.Match, *sign_groups: str) -> float | None:
    value = _to_number(match.string, match, "number")
    if value is None:
        return None
    for group in sign_groups:
        sign = match.group(group)
        if sign and sign in _MINUS_SIGNS:
            return -value
    return value


def _pnl_amount(doc: _Document) -> tuple[float, str | None] | None:
    for match in _PNL_AMOUNT.finditer(doc.text):
        if _NOT_PNL.search(_line_prefix(doc.text, match.start())):
            continue
        if _PIPS_AFTER.match(doc.text, match.end("number")):
            continue
        value = _signed(match, "sign", "sign2")
        if value is None:
            continue
        symbol = match.group("prefix") or match.group("suffix")
        return value, _CURRENCY_CODES.get(symbol.upper() if symbol and symbol.isascii() else symbol)
    return None


def _pips_pattern(pattern: re.Pattern) -> Strategy:
    def strategy(doc: _Document) -> float | None:
        for match in pattern.finditer(doc.text):
            if _SL_TP_LINE.search(_line_prefix(doc.text, match.start())):
                continue
            value = _signed(match, "sign")
            if value is not None:
                return value
        return None

    return strategy


PNL_AMOUNT_STRATEGIES: tuple[Strategy, ...] = (_pnl_amount,)
PNL_PIPS_STRATEGIES: tuple[Strategy, ...] = (_pips_pattern(_PIPS_SUFFIX), _pips_pattern(_PIPS_LABEL))


# ---------- timestamps ----------

_DATETIME = (
    r"(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:[+-]\d{2}:\d{2}|Z)?"
    r"|\d{4}\s*[-/.年]\s*\d{1,2}\s*[-/.月]\s*\d{1,2}\s*日?(?:\s*[(（][月火水木金土日][)）])?"
    r"(?:\s*T?\s*\d{1,2}\s*[:時]\s*\d{2}(?:\s*[:分]\s*\d{2})?)?)"
)
_ANY_DATETIME = re.compile(_DATETIME)
_EXIT_CONTEXT = re.compile(r"close|closing|exit|settle|決済", re.I)


def _labelled_time(label: str, reject_before: re.Pattern | None = None) -> Strategy:
    pattern = re.compile(rf"(?:{label})\s*[:=]?\s*{_DATETIME}", re.I)

    def strategy(doc: _Document) -> str | None:
        for match in pattern.finditer(doc.text):
            if reject_before is not None and reject_before.search(_line_prefix(doc.text, match.start())):
                continue
            return parse_timestamp(match.group(1), doc.timezone)
        return None

    return strategy


def _first_datetime(doc: _Document) -> str | None:
    for match in _ANY_DATETIME.finditer(doc.text):
        if _EXIT_CONTEXT.search(_line_prefix(doc.text, match.start())):
            continue
        return parse_timestamp(match.group(1), doc.timezone)
    return None


ENTRY_TIME_STRATEGIES: tuple[Strategy, ...] = (
    _labelled_time(
        r"\b(?:open|entry|execution|executed|trade|order|fill(?:ed)?)\s*(?:time|date)\b"
        r"|新規約定日時|約定日時|約定時刻|注文日時|取引日時|エントリー日時",
        _NOT_ENTRY,
    ),
    _labelled_time(r"\b(?:time|date)\b|日時|時刻", _NOT_ENTRY),
    _first_datetime,
)

EXIT_TIME_STRATEGIES: tuple[Strategy, ...] = (
    _labelled_time(r"\b(?:close|closing|exit|settlement)\s*(?:time|date)\b|決済約定日時|決済日時|決済時刻"),
)


# ---------- parser ----------


class EmailParser:
    """Turn one broker email into a ParsedTrade, or None when it is not a trade."""

    def __init__(
        self,
        default_timezone: str = settings.default_timezone,
        default_pnl_currency: str = settings.default_pnl_currency,
    ) -> None:
        self._timezone = default_timezone
        self._pnl_currency = default_pnl_currency

    def parse(
        self,
        subject: str,
        body: str,
        message_id: str,
        sender: str = "",
        sender_name: str | None = None,
    ) -> ParsedTrade | None:
        """Extract a trade from the email.

        Returns None (never raises for unparseable text) when no currency pair
        or no price could be found; the caller decides whether to log it.
        """
        doc = _Document(text=prepare_text(subject, body), timezone=self._timezone)

        found_pair = _first(PAIR_STRATEGIES, doc)
        if found_pair is None:
            logger.debug("Email %s: no currency pair found", message_id)
            return None
        pair, doc.pair_span = found_pair

        entry_price = _first(ENTRY_PRICE_STRATEGIES, doc)
        exit_price = _first(EXIT_PRICE_STRATEGIES, doc)
        if entry_price is None and exit_price is None:
            logger.debug("Email %s: %s found but no price", message_id, pair)
            return None

        broker = detect_broker(sender, sender_name) or detect_broker_in_text(doc.text)

        direction = _first(DIRECTION_STRATEGIES, doc)
        if direction is None:
            logger.debug("Email %s: no direction keyword, assuming %s", message_id, BUY)
            direction = BUY

        lot = parse_lot_size(doc.text, broker)

        pnl = _first(PNL_AMOUNT_STRATEGIES, doc)
        pnl_amount, pnl_currency = pnl if pnl else (None, None)
        pnl_pips = _first(PNL_PIPS_STRATEGIES, doc)
        has_pnl = pnl_amount is not None or pnl_pips is not None

        # No time in the body: stamp with ingestion time rather than dropping the trade
        entry_time = _first(ENTRY_TIME_STRATEGIES, doc) or current_timestamp(self._timezone)
        exit_time = _first(EXIT_TIME_STRATEGIES, doc)
        session = detect_market_session(entry_time, self._timezone)

        return ParsedTrade(
            pair=pair,
            direction=direction,
            entry_price=entry_price,
            entry_time=entry_time,
            timezone=self._timezone,
            exit_price=exit_price,
            exit_time=exit_time,
            stop_loss=_first(STOP_LOSS_STRATEGIES, doc),
            take_profit=_first(TAKE_PROFIT_STRATEGIES, doc),
            lot_size=lot.standard_lot if lot else None,
            lot_size_raw=lot,
            pnl_amount=pnl_amount,
            pnl_pips=pnl_pips,
            pnl_currency=(pnl_currency or self._pnl_currency) if has_pnl else None,
            pnl_source="email" if has_pnl else None,
            broker=broker,
            session=session.value if session else None,
            notes=f"Auto-imported from {broker or 'broker'} email: {(subject or '').strip()}",
            tags=[broker] if broker else [],
            original_email_id=message_id,
        )


_default_parser = EmailParser()


def parse_trade_email(
    subject: str,
    body: str,
    message_id: str,
    sender: str = "",
    sender_name: str | None = None,
) -> ParsedTrade | None:
    """Parse with the default timezone and PnL currency from settings."""
    return _default_parser.parse(subject, body, message_id, sender, sender_name)
