# storeinsight/map/fuzzy.py
"""
Advisory header -> required-field suggestions.

Only used to pre-fill the header mapping an analyst confirms; row labels that
feed totals go through the exact alias table in map.aliases instead.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import yaml
from rapidfuzz.distance import JaroWinkler

from storeinsight.config import AUTO_MAP_THRESHOLD, CONFIG_DIR

logger = logging.getLogger(__name__)

COA_YAML = CONFIG_DIR / "coa.yaml"
TOKEN_BOOST_WEIGHT = 0.15

Scorer = Callable[[str, str], float]


def _load_coa(yaml_path: Path = COA_YAML) -> dict:
    with open(yaml_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


_coa = _load_coa()
COA_SYNONYMS: Mapping[str, Tuple[str, ...]] = MappingProxyType(
    {str(k): tuple(str(s) for s in v or []) for k, v in (_coa.get("required_fields") or {}).items()}
)
REQUIRED_FIELDS: Tuple[str, ...] = tuple(COA_SYNONYMS)
VENDOR_HINTS: Tuple[Tuple[str, Tuple[str, ...]], ...] = tuple(
    (str(v["name"]), tuple(str(k).lower() for k in v.get("keywords") or []))
    for v in _coa.get("vendors") or []
)


def tokenize(text: str) -> List[str]:
    return re.sub(r"[^a-z0-9\s]", " ", text.lower()).split()


def token_boost(a: str, b: str) -> float:
    ta, tb = set(tokenize(a)), set(tokenize(b))
    if not ta or not tb:
        return 0.0
    return len(ta & tb) / max(len(ta), len(tb)) * TOKEN_BOOST_WEIGHT


def similarity(a: str, b: str) -> float:
    """Jaro-Winkler on lower-cased text plus a small shared-token boost, in [0, 1]."""
    a_l, b_l = a.lower().strip(), b.lower().strip()
    if not a_l or not b_l:
        return 0.0
    base = JaroWinkler.similarity(a_l, b_l)
    return max(0.0, min(1.0, base + token_boost(a_l, b_l)))


def score_header(field_name: str, header: str, scorer: Scorer = similarity) -> float:
    """Best score of `header` against the field name and all of its synonyms."""
    candidates = (field_name,) + COA_SYNONYMS.get(field_name, ())
    return max(scorer(header, c) for c in candidates)


@dataclass
class Suggestion:
    header: str
    score: float

    def to_dict(self) -> Dict[str, object]:
        return {"header": self.header, "score": round(self.score, 4)}


@dataclass
class AutoMapResult:
    mapping: Dict[str, str] = field(default_factory=dict)
    suggestions: Dict[str, Optional[Suggestion]] = field(default_factory=dict)
    unresolved: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "mapping": dict(self.mapping),
            "suggestions": {k: (s.to_dict() if s else None) for k, s in self.suggestions.items()},
            "unresolved": list(self.unresolved),
        }


def auto_map_required_fields(
    headers: Sequence[str],
    required: Optional[Sequence[str]] = None,
    threshold: float = AUTO_MAP_THRESHOLD,
    scorer: Scorer = similarity,
) -> AutoMapResult:
    """
    Suggest a header for each required field.

    Fields whose best score reaches `threshold` are mapped; each header is used
    for at most one field, strongest score first. Everything else is left in
    `unresolved` with its best suggestion still reported.
    """
    fields = list(required) if required else list(REQUIRED_FIELDS)
    clean_headers = [str(h) for h in headers if h is not None and str(h).strip()]
    result = AutoMapResult()

    scored: List[Tuple[float, int, str, str]] = []
    for f_idx, f in enumerate(fields):
        best: Optional[Suggestion] = None
        for header in clean_headers:
            s = score_header(f, header, scorer)
            scored.append((s, -f_idx, f, header))
            if best is None or s > best.score:
                best = Suggestion(header=header, score=s)
        result.suggestions[f] = best

    used_headers = set()
    for s, _, f, header in sorted(scored, key=lambda t: (t[0], t[1]), reverse=True):
        if s < threshold:
            break
        if f in result.mapping or header in used_headers:
            continue
        result.mapping[f] = header
        used_headers.add(header)

    result.unresolved = [f for f in fields if f not in result.mapping]
    logger.debug("auto-map: %d mapped, %d unresolved", len(result.mapping), len(result.unresolved))
    return result


def detect_vendor(headers: Sequence[str], filename: str = "") -> str:
    haystack = "|".join(str(h) for h in headers if h is not None).lower() + "|" + filename.lower()
    for name, keywords in VENDOR_HINTS:
        if any(k in haystack for k in keywords):
            return name
    return "Unknown"


_FILE_MONTHS = {
    "jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec",
    "january", "february", "march", "april", "june", "july", "august", "september",
    "october", "november", "december",
}


def detect_facility_period_from_filename(filename: str) -> Tuple[Optional[str], Optional[str]]:
    """
    Guess (facility, period) from names like 'Midtown_Oct_2025.xlsx'.
    Facility is everything before the month word; period is 'Mon YYYY'.
    """
    base = os.path.splitext(os.path.basename(filename or ""))[0]
    parts = [p for p in re.split(r"[_\-\s]+", base) if p]
    facility: Optional[str] = None
    period: Optional[str] = None
    for i, part in enumerate(parts):
        if part.lower() not in _FILE_MONTHS:
            continue
        if i + 1 < len(parts) and re.fullmatch(r"\d{4}", parts[i + 1]):
            period = f"{part[:3].capitalize()} {parts[i + 1]}"
        if i > 0:
            facility = " ".join(parts[:i])
        break
    return facility, period
