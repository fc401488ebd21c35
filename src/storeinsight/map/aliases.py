# storeinsight/map/aliases.py
"""
Exact alias mapping between vendor row labels and canonical proforma line keys.

The tables are read once from configs/aliases.yaml at import time and exposed
as read-only mappings.
"""

from __future__ import annotations

import re
from pathlib import Path
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

import yaml

from storeinsight.config import CONFIG_DIR

ALIASES_YAML = CONFIG_DIR / "aliases.yaml"

_PAREN_RE = re.compile(r"(\([^()]*\))")
_PUNCT_RE = re.compile(r"[^\w\s]")


def normalize_label(text: Optional[str]) -> str:
    """
    Lower-case, '&' -> 'and', strip punctuation outside parentheses and
    collapse whitespace. Parenthesized qualifiers such as '(5.25%)' are kept.
    """
    s = str(text or "").lower().replace("&", " and ")
    parts = _PAREN_RE.split(s)
    out = []
    for i, part in enumerate(parts):
        if i % 2 == 1:
            out.append(" " + " ".join(part.split()) + " ")
        else:
            out.append(_PUNCT_RE.sub(" ", part))
    return " ".join("".join(out).split())


def load_alias_config(yaml_path: Path = ALIASES_YAML) -> dict:
    with open(yaml_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _build_tables(cfg: dict):
    forward: Dict[str, str] = {}
    inverse: Dict[str, Tuple[str, ...]] = {}
    sections: Dict[str, str] = {}

    for key, entry in (cfg.get("lines") or {}).items():
        key = str(key)
        entry = entry or {}
        sections[key] = str(entry.get("section", "income"))
        forward[normalize_label(key)] = key
        for alias in entry.get("aliases") or []:
            forward.setdefault(normalize_label(alias), key)
        labels = [str(x) for x in (entry.get("template_labels") or [key])]
        for label in labels:
            forward.setdefault(normalize_label(label), key)
        inverse[key] = tuple(labels)

    for key, labels in (cfg.get("template_only") or {}).items():
        inverse.setdefault(str(key), tuple(str(x) for x in labels or [key]))

    contra = frozenset(str(x) for x in cfg.get("contra") or [])
    return forward, inverse, sections, contra


_forward, _inverse, _sections, _contra = _build_tables(load_alias_config())

ALIAS_TABLE: Mapping[str, str] = MappingProxyType(_forward)
TEMPLATE_LABELS: Mapping[str, Tuple[str, ...]] = MappingProxyType(_inverse)
LINE_SECTIONS: Mapping[str, str] = MappingProxyType(_sections)
CONTRA_KEYS = _contra
TOTAL_KEYS = frozenset(k for k, section in _sections.items() if section == "total")


def canonicalize(label: str) -> Tuple[str, Optional[str]]:
    """
    Map a raw label to (canonical_key, matched_alias).
    Unmapped labels pass through unchanged with matched_alias None.
    """
    norm = normalize_label(label)
    key = ALIAS_TABLE.get(norm)
    if key is None:
        return label, None
    return key, norm


def canonical_key(label: str) -> str:
    return canonicalize(label)[0]


def is_contra(key: str) -> bool:
    return key in CONTRA_KEYS or canonical_key(key) in CONTRA_KEYS


def is_total(key: str) -> bool:
    return key in TOTAL_KEYS or canonical_key(key) in TOTAL_KEYS


def destination_labels(key: str) -> List[str]:
    """Ordered destination-template labels to try when writing `key`."""
    if key in TEMPLATE_LABELS:
        return list(TEMPLATE_LABELS[key])
    canon = canonical_key(key)
    if canon in TEMPLATE_LABELS:
        return list(TEMPLATE_LABELS[canon])
    return [key]


def lines_in_section(section: str) -> List[str]:
    return [k for k, s in LINE_SECTIONS.items() if s == section]
