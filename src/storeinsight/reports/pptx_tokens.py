# storeinsight/reports/pptx_tokens.py
"""
Owner report placeholders: discover `{{TOKEN}}` names in a .pptx template and
render a filled copy with python-pptx.
"""

from __future__ import annotations

import hashlib
import io
import logging
import re
import zipfile
from datetime import date
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from pptx import Presentation
from pptx.shapes.group import GroupShape

logger = logging.getLogger(__name__)

REQUIRED_DELINQUENCY_TOKENS = (
    "DELINPER30", "DELINUNIT30", "DELINDOL30",
    "DELINPER60", "DELINUNIT60", "DELINDOL60",
    "DELINPER61", "DELINUNIT61", "DELINDOL61",
)

DASH = "–"
BLANK_LITERALS = {"", "nan", "NaN", "None", "undefined"}

TOKEN_FILE_RE = re.compile(r"^ppt/(slides|slideMasters|slideLayouts)/[^/]+\.xml$")
PLACEHOLDER_RE = re.compile(r"\{\{([^{}]+)\}\}")
TAG_RE = re.compile(r"<[^>]+>")
ENTITY_RE = re.compile(r"&[a-z0-9#]+;", re.IGNORECASE)
HIDDEN_CHAR_RE = re.compile(r"[\u200B-\u200D\u2060\uFEFF\u00A0\u202F]")
NON_TOKEN_RE = re.compile(r"[^A-Za-z0-9_]")
NEGATIVE_ZERO_RE = re.compile(r"^(-\$|\$-|-)(0(\.0+)?)(%?)$")

Template = Union[bytes, str, Path]


def strip_hidden(text: str) -> str:
    return HIDDEN_CHAR_RE.sub("", text)


def normalize_token_key(raw: Optional[str]) -> Optional[str]:
    """'{{ delin per30 }}' -> 'DELINPER30'; None when nothing usable remains."""
    if not isinstance(raw, str):
        return None
    cleaned = NON_TOKEN_RE.sub("", strip_hidden(ENTITY_RE.sub("", raw)))
    return cleaned.upper() or None


def _template_bytes(template: Template) -> bytes:
    if isinstance(template, (bytes, bytearray)):
        return bytes(template)
    return Path(template).read_bytes()


def template_sha256(template: Template) -> str:
    return hashlib.sha256(_template_bytes(template)).hexdigest()


def scan_pptx_tokens(template: Template) -> List[str]:
    """Sorted token names found in slide, layout and master XML."""
    found = set()
    with zipfile.ZipFile(io.BytesIO(_template_bytes(template))) as zf:
        for name in sorted(n for n in zf.namelist() if TOKEN_FILE_RE.match(n)):
            xml = zf.read(name).decode("utf-8", errors="ignore")
            flattened = TAG_RE.sub("", strip_hidden(xml))
            for match in PLACEHOLDER_RE.finditer(flattened):
                key = normalize_token_key(match.group(1))
                if key:
                    found.add(key)
    return sorted(found)


def missing_tokens(found: Iterable[str], required: Iterable[str] = REQUIRED_DELINQUENCY_TOKENS) -> List[str]:
    present = set(found)
    return [t for t in required if t not in present]


# --------------------------------------------------------------------
# Value formatting
# --------------------------------------------------------------------

def format_currency(value: float) -> str:
    text = f"${abs(value):,.2f}"
    return f"-{text}" if value < 0 and text != "$0.00" else text


def format_budget_value(token: str, value: float) -> str:
    if token.endswith("VARPER"):
        return f"{value:.1f}%"
    return format_currency(value)


def render_value(value: Any) -> str:
    """Text placed in the slide: blanks become an en dash, '-0' becomes '0'."""
    if value is None:
        return DASH
    if isinstance(value, float) and value != value:
        return DASH
    text = str(value).strip()
    if text in BLANK_LITERALS:
        return DASH
    m = NEGATIVE_ZERO_RE.match(text)
    if m:
        return ("$" if "$" in m.group(1) else "") + m.group(2) + m.group(4)
    return text


def owner_report_values(
    facility: Optional[str] = None,
    period: Optional[str] = None,
    budget=None,
    delinquency=None,
    owner_fields=None,
    performance=None,
    totals: Optional[Mapping[str, Iterable[float]]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    today: Optional[date] = None,
) -> Dict[str, str]:
    """
    Merge every token source into one `{TOKEN: text}` mapping.

    budget is a BudgetExtraction, delinquency a DelinquencyExtraction, owner_fields
    an OwnerFieldsExtraction, performance a PerformanceExtraction and totals a
    `{toi, toe, noi}` mapping of monthly values (summed for the report). Later
    sources win: owner fields, move activity, series totals, budget, delinquency,
    then overrides. Blank owner fields never replace a value.
    """
    values: Dict[str, str] = {
        "FACILITY": facility or "",
        "PERIOD": period or "",
        "CURRENTDATE": (today or date.today()).strftime("%m/%d/%Y"),
    }

    if owner_fields is not None:
        values.update({k: v for k, v in owner_fields.template_tokens().items() if v})

    if performance is not None:
        values.update(performance.tokens)

    if totals:
        for token, key in (("TOTALINCOME", "toi"), ("TOTALEXPENSE", "toe"), ("NETINCOME", "noi")):
            series = totals.get(key)
            if series is not None:
                values[token] = format_currency(sum(float(v) for v in series))

    if budget is not None:
        for token, number in budget.tokens.items():
            values[token] = format_budget_value(token, number)
        for token, source in (("TOTALINCOME", "TOTALINCCM"), ("TOTALEXPENSE", "TOTEXPCM"),
                               ("TOTALEXPENSES", "TOTEXPCM"), ("NETINCOME", "NETINCCM")):
            if source in budget.tokens:
                values[token] = format_currency(budget.tokens[source])
        if budget.owner_group:
            values["OWNERGROUP"] = budget.owner_group

    if delinquency is not None:
        values.update(delinquency.tokens)

    for raw_key, value in (overrides or {}).items():
        key = normalize_token_key(raw_key)
        if key:
            values[key] = "" if value is None else str(value)
    return values


# --------------------------------------------------------------------
# Rendering
# --------------------------------------------------------------------

def _substitute(text: str, values: Mapping[str, str]) -> str:
    def repl(m):
        key = normalize_token_key(m.group(1))
        if key is None:
            return m.group(0)
        return render_value(values.get(key))

    return PLACEHOLDER_RE.sub(repl, text)


def _replace_in_para(para, values: Mapping[str, str]) -> int:
    """
    Replace tokens in a paragraph. Tokens contained in a single run are replaced
    in place so the run keeps its formatting; a token split across runs forces the
    paragraph text into the first run and empties the others.
    """
    replaced = 0
    for run in para.runs:
        if "{{" in run.text:
            new_text = _substitute(run.text, values)
            if new_text != run.text:
                run.text = new_text
                replaced += 1

    full_text = "".join(r.text for r in para.runs)
    if PLACEHOLDER_RE.search(full_text) and para.runs:
        para.runs[0].text = _substitute(full_text, values)
        for run in para.runs[1:]:
            run.text = ""
        replaced += 1
    return replaced


def _text_frames(shape):
    if isinstance(shape, GroupShape):
        for child in shape.shapes:
            yield from _text_frames(child)
        return
    if shape.has_text_frame:
        yield shape.text_frame
    if shape.has_table:
        for row in shape.table.rows:
            for cell in row.cells:
                yield cell.text_frame


def render_owner_report(template: Template, values: Mapping[str, Any]) -> bytes:
    """Fill every `{{TOKEN}}` on the slides and return the .pptx bytes."""
    normalized = {}
    for raw_key, value in values.items():
        key = normalize_token_key(raw_key)
        if key:
            normalized[key] = value

    prs = Presentation(io.BytesIO(_template_bytes(template)))
    replaced = 0
    for slide in prs.slides:
        for shape in slide.shapes:
            for frame in _text_frames(shape):
                for para in frame.paragraphs:
                    replaced += _replace_in_para(para, normalized)

    buf = io.BytesIO()
    prs.save(buf)
    logger.info("Owner report rendered: %d paragraph replacement(s)", replaced)
    return buf.getvalue()
