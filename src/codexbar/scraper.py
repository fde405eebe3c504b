"""
helpers that pull usage numbers out of interactive terminal output.

Everything here is stateless and works on ANSI-stripped text. Every
extractor returns None when nothing matches: callers must read that as
"unknown", never as zero usage.
"""

import re

from codexbar.models import clamp_percent

# ESC followed by an optional CSI body running up to its final byte
# (0x40-0x7E). A lone ESC is dropped without eating the next character.
_ANSI_RE = re.compile(r"\x1b(?:\[[^\x40-\x7e]*[\x40-\x7e]?)?")

# lines scanned after a label when looking for its percentage
DEFAULT_LOOKAHEAD = 8

_DIGITS = frozenset("0123456789")

_USED_MARKERS = ("used", "spent", "consumed")


def strip_ansi(text: "str") -> "str":
    return _ANSI_RE.sub("", text)


def first_line_containing(text: "str", needle: "str") -> "str | None":
    """
    returns the first line containing needle, ignoring case.
    """
    needle_lower = needle.lower()
    for line in text.splitlines():
        if needle_lower in line.lower():
            return line
    return None


def parse_first_number(text: "str") -> "float | None":
    """
    parses the first run of digits, '.' and ',' in text. Thousands
    separators are dropped, so "1,234.5" reads as 1234.5.
    """
    start = 0
    while start < len(text) and text[start] not in _DIGITS:
        start += 1
    if start == len(text):
        return None

    end = start
    while end < len(text) and (text[end] in _DIGITS or text[end] in ".,"):
        end += 1

    try:
        return float(text[start:end].replace(",", ""))
    except ValueError:
        return None


def parse_last_number(text: "str") -> "float | None":
    """
    parses the rightmost run of digits and '.' in text.
    """
    end = len(text)
    while end > 0 and text[end - 1] not in _DIGITS:
        end -= 1
    if end == 0:
        return None

    start = end
    while start > 0 and (text[start - 1] in _DIGITS or text[start - 1] == "."):
        start -= 1

    try:
        return float(text[start:end])
    except ValueError:
        return None


def _number_before_percent(line: "str") -> "float | None":
    index = line.find("%")
    if index < 0:
        return None
    return parse_last_number(line[:index])


def extract_percent_left(line: "str") -> "float | None":
    """
    reads the "N% left" value from a status line. Lines that do not
    mention "left" are rejected.
    """
    if "left" not in line.lower():
        return None
    return _number_before_percent(line)


def extract_labelled_used_percent(text: "str", label: "str") -> "float | None":
    """
    finds the first line mentioning label (e.g. "5h limit") and
    converts its "N% left" reading into a used percentage.
    """
    line = first_line_containing(text, label)
    if line is None:
        return None
    left = extract_percent_left(line)
    if left is None:
        return None
    return clamp_percent(100.0 - left)


def extract_windowed_used_percent(
    text: "str",
    labels: "tuple[str, ...] | list[str]",
    lookahead: "int" = DEFAULT_LOOKAHEAD,
) -> "float | None":
    """
    used for multi-line output where the label sits on its own line
    and the percentage follows a few lines below, e.g.

        Current session
        ███████▌ 45% used

    The first line matching any label anchors the search; the next
    lookahead lines are scanned for the first one carrying a '%'.
    Values on "used/spent/consumed" lines are taken as-is, anything
    else is read as a remaining percentage and inverted.
    """
    lowered_labels = [label.lower() for label in labels]
    lines = text.splitlines()

    for index, line in enumerate(lines):
        lower = line.lower()
        if not any(label in lower for label in lowered_labels):
            continue

        for candidate in lines[index + 1 : index + 1 + lookahead]:
            if "%" not in candidate:
                continue
            value = _number_before_percent(candidate)
            if value is None:
                return None
            candidate_lower = candidate.lower()
            if any(marker in candidate_lower for marker in _USED_MARKERS):
                return clamp_percent(value)
            return clamp_percent(100.0 - value)
        return None

    return None


def extract_credits(text: "str") -> "float | None":
    """
    returns the first number on any line mentioning credits,
    preferring the part after a colon.
    """
    for line in text.splitlines():
        if "credits" not in line.lower():
            continue

        _, colon, tail = line.partition(":")
        if colon:
            value = parse_first_number(tail)
            if value is not None:
                return value

        value = parse_first_number(line)
        if value is not None:
            return value

    return None
