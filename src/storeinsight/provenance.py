"""Audit records returned alongside every extraction and export."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional


@dataclass(frozen=True)
class ProvenanceEntry:
    token: str
    source_sheet: str = ""
    source_cell: str = ""
    matched_alias: Optional[str] = None
    computed_from: Optional[str] = None
    note: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "sourceSheet": self.source_sheet,
            "sourceCell": self.source_cell,
            "matchedAlias": self.matched_alias,
            "computedFrom": self.computed_from,
            "note": self.note,
        }


def provenance_dicts(entries: Iterable[ProvenanceEntry]) -> List[Dict[str, Any]]:
    return [e.to_dict() for e in entries]
