"""Tolerant JSON repair.

Only called after json.loads() already failed on the extractor's output;
valid JSON never reaches this module.

Text-level cleanup runs first, each step idempotent:

  trim_to_structure   drop prose before the first { or [
  strip_control_chars remove control characters (tab/newline/CR kept)
  normalize_quotes    curly quotes → plain quotes
  remove_ellipses     drop "..." and "…" runs

Then a tolerant recursive-descent parser reads the remainder. It applies
one recovery rule per failure mode instead of chained regex substitutions:

  trailing / doubled commas   skipped
  missing commas              items separated by whitespace are accepted
  bare object keys            read up to the colon
  bare word values            true/false/null (and Python spellings), else a string
  leading "+" on numbers      dropped
  unescaped inner quotes      a quote not followed by , } ] : or a line break
                              is kept as a literal character
  raw newlines in strings     kept as characters (escaped on re-serialisation)
  unbalanced brackets         missing closers are supplied at end of input or
                              at a mismatched closer; surplus closers and any
                              text after the top-level value are ignored
  unterminated string         closed before the trailing run of closers

If the parser gives up, the longest span that the stdlib decoder accepts
as-is is used. If there is none, RepairFailure is raised.

The result is re-serialised with json.dumps, so the same malformed input
always yields the same output text.
"""

from __future__ import annotations

import json
import re
from typing import Any

from taleweaver.errors import RepairFailure

_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_ELLIPSIS_RE = re.compile(r"\.{3,}|…+")
_NUMBER_RE = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")
_SMART_QUOTES = str.maketrans({
    "“": '"', "”": '"', "„": '"', "‟": '"',
    "‘": "'", "’": "'", "‚": "'", "‛": "'",
})

_WHITESPACE = " \t\r\n"
_CLOSERS = "}]"
_STRING_TERMINATORS = ",}]:"
_BARE_VALUE_STOP = ",}]\n"
_BARE_KEY_STOP = ":{}[],\"'\n"
_KEYWORDS: dict[str, Any] = {
    "true": True, "false": False, "null": None,
    "True": True, "False": False, "None": None,
}
_ESCAPES = {
    '"': '"', "'": "'", "\\": "\\", "/": "/",
    "b": "\b", "f": "\f", "n": "\n", "r": "\r", "t": "\t",
}


class _Unrecoverable(ValueError):
    pass


# ---------------------------------------------------------------------------
# Text-level cleanup
# ---------------------------------------------------------------------------

def trim_to_structure(text: str) -> str:
    """Drop everything before the first { or [."""
    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    if not starts:
        raise RepairFailure("No JSON object or array found")
    return text[min(starts):].rstrip()


def strip_control_chars(text: str) -> str:
    return _CONTROL_RE.sub("", text)


def normalize_quotes(text: str) -> str:
    return text.translate(_SMART_QUOTES)


def remove_ellipses(text: str) -> str:
    return _ELLIPSIS_RE.sub("", text)


# ---------------------------------------------------------------------------
# Tolerant parser
# ---------------------------------------------------------------------------

class _TolerantParser:
    def __init__(self, text: str) -> None:
        self._text = text
        self._pos = 0
        self._end = len(text)

    def parse(self) -> Any:
        self._skip_ws()
        value = self._value()
        if not isinstance(value, (dict, list)):
            raise _Unrecoverable("Top-level value is not an object or array")
        return value

    # -- helpers ------------------------------------------------------

    def _peek(self) -> str:
        return self._text[self._pos] if self._pos < self._end else ""

    def _skip_ws(self) -> None:
        while self._pos < self._end and self._text[self._pos] in _WHITESPACE:
            self._pos += 1

    def _skip_separators(self) -> None:
        while self._pos < self._end and self._text[self._pos] in _WHITESPACE + ",":
            self._pos += 1

    # -- grammar ------------------------------------------------------

    def _value(self) -> Any:
        ch = self._peek()
        if not ch:
            raise _Unrecoverable("Unexpected end of input, value expected")
        if ch == "{":
            return self._object()
        if ch == "[":
            return self._array()
        if ch in "\"'":
            return self._string(ch)
        if ch.isdigit() or ch in "+-.":
            return self._number()
        if ch.isalpha() or ch in "_$":
            return self._bare_value()
        raise _Unrecoverable(f"Unexpected {ch!r} at {self._pos}, value expected")

    def _object(self) -> dict[str, Any]:
        self._pos += 1  # {
        result: dict[str, Any] = {}
        while True:
            self._skip_separators()
            ch = self._peek()
            if not ch:
                return result
            if ch == "}":
                self._pos += 1
                return result
            if ch == "]":
                # mismatched closer: this object is implicitly closed
                return result

            key = self._key()
            self._skip_ws()
            if not self._peek():
                return result  # dangling key at end of input
            if self._peek() != ":":
                raise _Unrecoverable(f"Expected ':' after key {key!r} at {self._pos}")
            self._pos += 1
            self._skip_ws()
            if not self._peek():
                return result
            result[key] = self._value()

    def _array(self) -> list[Any]:
        self._pos += 1  # [
        result: list[Any] = []
        while True:
            self._skip_separators()
            ch = self._peek()
            if not ch:
                return result
            if ch == "]":
                self._pos += 1
                return result
            if ch == "}":
                return result
            result.append(self._value())

    def _key(self) -> str:
        ch = self._peek()
        if ch in "\"'":
            return self._string(ch)
        if not (ch.isalpha() or ch in "_$"):
            raise _Unrecoverable(f"Unexpected {ch!r} at {self._pos}, key expected")
        start = self._pos
        while self._pos < self._end and self._text[self._pos] not in _BARE_KEY_STOP:
            self._pos += 1
        return self._text[start:self._pos].strip()

    def _closes_string(self, quote_pos: int) -> bool:
        """Decide whether the quote at quote_pos terminates the current string."""
        j = quote_pos + 1
        saw_newline = False
        while j < self._end and self._text[j] in _WHITESPACE:
            saw_newline = saw_newline or self._text[j] == "\n"
            j += 1
        if j >= self._end or saw_newline:
            return True
        if j > quote_pos + 1 and self._text[j] == self._text[quote_pos]:
            return True  # "a" "b": missing comma between items
        return self._text[j] in _STRING_TERMINATORS

    def _string(self, quote: str) -> str:
        self._pos += 1  # opening quote
        start = self._pos
        parts: list[str] = []
        part_ends: list[int] = []

        while self._pos < self._end:
            ch = self._text[self._pos]
            if ch == "\\":
                if self._pos + 1 >= self._end:
                    self._pos += 1
                    break
                esc = self._text[self._pos + 1]
                if esc == "u" and re.fullmatch(r"[0-9a-fA-F]{4}", self._text[self._pos + 2:self._pos + 6]):
                    parts.append(chr(int(self._text[self._pos + 2:self._pos + 6], 16)))
                    self._pos += 6
                else:
                    parts.append(_ESCAPES.get(esc, esc))
                    self._pos += 2
                part_ends.append(self._pos)
                continue
            if ch == quote and self._closes_string(self._pos):
                self._pos += 1
                return "".join(parts)
            parts.append(ch)
            self._pos += 1
            part_ends.append(self._pos)

        # Unterminated: give the trailing run of closers back to the structure
        raw = self._text[start:]
        cut = start + len(raw.rstrip(_WHITESPACE + _CLOSERS))
        kept = [p for p, end in zip(parts, part_ends) if end <= cut]
        self._pos = max(cut, start)
        return "".join(kept)

    def _number(self) -> int | float:
        match = _NUMBER_RE.match(self._text, self._pos)
        if not match:
            raise _Unrecoverable(f"Malformed number at {self._pos}")
        self._pos = match.end()
        literal = match.group(0).lstrip("+")
        if any(c in literal for c in ".eE"):
            return float(literal)
        return int(literal)

    def _bare_value(self) -> Any:
        start = self._pos
        while self._pos < self._end and self._text[self._pos] not in _BARE_VALUE_STOP:
            self._pos += 1
        word = self._text[start:self._pos].strip()
        return _KEYWORDS.get(word, word)


def tolerant_loads(text: str) -> Any:
    """Parse near-valid JSON with the recovery rules above.

    Raises RepairFailure if the input cannot be recovered.
    """
    try:
        return _TolerantParser(text).parse()
    except _Unrecoverable as e:
        raise RepairFailure(str(e)) from e


def largest_valid_json(text: str) -> Any:
    """Return the longest object/array the stdlib decoder accepts verbatim."""
    decoder = json.JSONDecoder()
    best: Any = None
    best_len = 0
    for i, ch in enumerate(text):
        if ch not in "{[":
            continue
        try:
            value, end = decoder.raw_decode(text, i)
        except json.JSONDecodeError:
            continue
        if end - i > best_len:
            best, best_len = value, end - i
    if best is None:
        raise RepairFailure("No valid JSON fragment found")
    return best


def repair(candidate: str) -> str:
    """Best-effort structural repair. Returns JSON text or raises RepairFailure."""
    text = trim_to_structure(candidate)
    text = strip_control_chars(text)
    text = normalize_quotes(text)
    text = remove_ellipses(text)
    try:
        value = tolerant_loads(text)
    except RepairFailure:
        value = largest_valid_json(text)
    return json.dumps(value, ensure_ascii=False)
