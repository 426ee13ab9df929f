"""Repair ladder for malformed model JSON.

Each tier is a pure text transform built on one scanner state machine
(`_ScanState`) and can be tested on its own. Tiers are cumulative: tier N
parses the output of tiers 0..N. When nothing parses, tier -1 extracts known
fields with regular expressions. `repair` never raises.

    0. strip code fences and surrounding prose
    1. drop trailing commas before a closer
    2. escape raw control characters inside strings
    3. close strings, containers and dangling keys; drop stray closers
   -1. field extraction
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
import dataclasses
import json
import logging
import re
import typing

from place_intel.core.types import RepairedFragment

log = logging.getLogger(__name__)

_CLOSER = {"{": "}", "[": "]"}
_ESCAPES = {"\n": "\\n", "\r": "\\r", "\t": "\\t", "\b": "\\b", "\f": "\\f"}
_FENCE_RE = re.compile(r"```[ \t]*(?:json|JSON)?[ \t]*\n?(.*?)(?:```|$)", re.DOTALL)
_BAREWORD_RE = re.compile(r"[A-Za-z0-9.+\-]+$")
_NUMBER_RE = re.compile(r"-?(?:0|[1-9]\d*)(?:\.\d+)?(?:[eE][+-]?\d+)?")
_DECODER = json.JSONDecoder()

type FieldNames = Iterable[str] | Mapping[str, Iterable[str]]


@dataclasses.dataclass(slots=True)
class _ScanState:
    """Character scanner tracking string, escape and container state."""

    in_string: bool = False
    escaped: bool = False
    stack: list[str] = dataclasses.field(default_factory=list)

    def feed_string(self, ch: str) -> bool:
        """Advance over `ch`; True when it belongs to a string literal (quotes included)."""
        if self.in_string:
            if self.escaped:
                self.escaped = False
            elif ch == "\\":
                self.escaped = True
            elif ch == '"':
                self.in_string = False
            return True
        if ch == '"':
            self.in_string = True
            return True
        return False


# --- Tier 0 ---


def strip_wrappers(text: str) -> str:
    """Remove code fences and any prose before the first `{` or `[`."""
    fenced = _FENCE_RE.search(text)
    if fenced is not None:
        text = fenced.group(1)
    starts = [i for i in (text.find("{"), text.find("[")) if i >= 0]
    if starts:
        text = text[min(starts) :]
    return text.strip()


def _load(text: str) -> dict[str, typing.Any] | None:
    """Parse the leading JSON value; trailing text is ignored."""
    try:
        value, _ = _DECODER.raw_decode(text)
    except (json.JSONDecodeError, RecursionError):
        return None
    if isinstance(value, dict):
        return value
    if isinstance(value, list) and len(value) == 1 and isinstance(value[0], dict):
        return value[0]
    return None


# --- Tier 1 ---


def remove_trailing_commas(text: str) -> str:
    """Drop commas (outside strings) that directly precede `}` or `]`."""
    state = _ScanState()
    out: list[str] = []
    for i, ch in enumerate(text):
        if state.feed_string(ch) or ch != ",":
            out.append(ch)
            continue
        rest = text[i + 1 :].lstrip()
        if rest[:1] in ("}", "]"):
            continue
        out.append(ch)
    return "".join(out)


# --- Tier 2 ---


def escape_control_chars(text: str) -> str:
    """Escape raw control characters that appear inside string literals."""
    state = _ScanState()
    out: list[str] = []
    for ch in text:
        was_escaped = state.escaped
        if state.feed_string(ch) and ord(ch) < 0x20:
            escaped = _ESCAPES.get(ch, f"\\u{ord(ch):04x}")
            # A backslash before the raw character already opened the escape
            out.append(escaped[1:] if was_escaped else escaped)
            continue
        out.append(ch)
    return "".join(out)


# --- Tier 3 ---


def _complete_bareword(out: list[str]) -> None:
    tail = "".join(out[-16:])
    match = _BAREWORD_RE.search(tail)
    if match is None:
        return
    word = match.group(0)
    if word in ("true", "false", "null") or _NUMBER_RE.fullmatch(word):
        return
    del out[len(out) - len(word) :]
    for literal in ("true", "false", "null"):
        if literal.startswith(word):
            out.extend(literal)
            return
    number = _NUMBER_RE.match(word)
    if number is not None:
        out.extend(number.group(0))


def _trim_tail(out: list[str]) -> None:
    """Make the output end at a point where a closer is valid."""
    while True:
        while out and out[-1].isspace():
            out.pop()
        if out and out[-1] == ",":
            out.pop()
            continue
        break
    if out and out[-1] == ":":
        out.extend("null")
    else:
        _complete_bareword(out)


def balance(text: str) -> str:
    """Close unterminated strings and containers; drop stray closers.

    A key left without a value at the end of an object is removed, a key
    followed only by `:` gets `null`. Text after the top-level value closes
    is discarded.
    """
    state = _ScanState()
    out: list[str] = []
    # Per open container: expecting an object key, and where a pending key begins
    expect_key: list[bool] = []
    key_cut: list[int | None] = []
    string_start = 0

    def close_top() -> None:
        closer = state.stack.pop()
        cut = key_cut.pop()
        expect_key.pop()
        if cut is not None:
            del out[cut:]
        _trim_tail(out)
        out.append(closer)

    def string_closed() -> None:
        if state.stack and state.stack[-1] == "}" and expect_key[-1]:
            key_cut[-1] = string_start

    for ch in text:
        was_in_string = state.in_string
        if state.feed_string(ch):
            if not was_in_string:
                string_start = len(out)
            out.append(ch)
            if was_in_string and not state.in_string:
                string_closed()
            continue
        if ch in _CLOSER:
            state.stack.append(_CLOSER[ch])
            expect_key.append(ch == "{")
            key_cut.append(None)
            out.append(ch)
        elif ch in ("}", "]"):
            if ch not in state.stack:
                continue
            while state.stack:
                top = state.stack[-1]
                close_top()
                if top == ch:
                    break
            if not state.stack:
                break
        elif ch == ":" and state.stack:
            expect_key[-1] = False
            key_cut[-1] = None
            out.append(ch)
        elif ch == "," and state.stack:
            if state.stack[-1] == "}":
                expect_key[-1] = True
            out.append(ch)
        else:
            out.append(ch)

    if state.in_string:
        if state.escaped:
            out.pop()
        out.append('"')
        string_closed()
    while state.stack:
        close_top()
    return "".join(out)


# --- Tier -1 ---

_VALUE_PATTERN = r'("(?:[^"\\]|\\.)*"?|-?\d[\d,.]*|\[[^\]]*\]?|true|false)'


def _decode_string(token: str) -> str:
    body = token[1:-1] if len(token) > 1 and token.endswith('"') else token[1:]
    try:
        return json.loads(escape_control_chars(f'"{body}"'))
    except json.JSONDecodeError:
        return body.replace('\\"', '"').replace("\\n", "\n").strip()


def _decode_value(token: str) -> typing.Any:
    if token.startswith('"'):
        return _decode_string(token)
    if token.startswith("["):
        parsed = _load('{"v": ' + balance(token) + "}")
        if parsed is not None and isinstance(parsed.get("v"), list):
            return parsed["v"]
        return [_decode_string(s) for s in re.findall(r'"(?:[^"\\]|\\.)*"?', token)]
    if token in ("true", "false"):
        return token == "true"
    return token.replace(",", "")


def _extract_flat(text: str, names: Iterable[str]) -> dict[str, typing.Any]:
    found: dict[str, typing.Any] = {}
    for name in names:
        match = re.search(rf'"{re.escape(name)}"\s*:\s*{_VALUE_PATTERN}', text, re.DOTALL)
        if match is None:
            continue
        value = _decode_value(match.group(1))
        if value not in ("", []):
            found[name] = value
    return found


def _section_block(text: str, section: str) -> str | None:
    match = re.search(rf'"{re.escape(section)}"\s*:\s*\{{', text)
    if match is None:
        return None
    state = _ScanState()
    depth = 0
    start = match.end() - 1
    for i in range(start, len(text)):
        ch = text[i]
        if state.feed_string(ch):
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return text[start:]


def extract_fields(text: str, field_names: FieldNames) -> dict[str, typing.Any]:
    """Best-effort regex extraction of known fields.

    With a mapping of section to field names, each section's block is
    searched separately. With a single field name and no match, the cleaned
    text becomes that field's value.
    """
    cleaned = strip_wrappers(text) if ("{" in text or "```" in text) else text.strip()
    if isinstance(field_names, Mapping):
        tree: dict[str, typing.Any] = {}
        for section, names in field_names.items():
            block = _section_block(cleaned, section)
            if block is None:
                continue
            fields = _extract_flat(block, names)
            if fields:
                tree[section] = fields
        return tree

    names = list(field_names)
    tree = _extract_flat(cleaned, names)
    if not tree and len(names) == 1:
        plain = text.strip().strip("`").strip()
        if plain and not plain.startswith(("{", "[")):
            tree[names[0]] = plain
    return tree


# --- Ladder ---


def repair(
    raw_text: str | None,
    field_names: FieldNames = (),
    *,
    section: str | None = None,
) -> RepairedFragment:
    """Parse model output, escalating through the repair tiers.

    Args:
        raw_text: The model's raw response.
        field_names: Field names for tier -1 extraction, or a mapping of
            section name to field names for a holistic response.
        section: The section an enrichment fragment targets, if any.

    Returns:
        The parsed tree and the tier that produced it.
    """
    raw = raw_text or ""
    text = strip_wrappers(raw)
    tier1 = remove_trailing_commas(text)
    tier2 = escape_control_chars(tier1)
    tier3 = balance(tier2)
    for tier, candidate in enumerate((text, tier1, tier2, tier3)):
        tree = _load(candidate)
        if tree is not None:
            if tier:
                log.debug("Repaired model output at tier %d", tier)
            return RepairedFragment(tree=tree, tier=tier, section=section)

    log.debug("Model output unparseable; falling back to field extraction")
    return RepairedFragment(tree=extract_fields(raw, field_names), tier=-1, section=section)
