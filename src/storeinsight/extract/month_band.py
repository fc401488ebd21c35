# storeinsight/extract/month_band.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from storeinsight.extract.coerce import coerce_month_token, sequential_pairs
from storeinsight.grid import Grid, cell_at

logger = logging.getLogger(__name__)

BAND_LENGTH = 12
MIN_SEQUENTIAL_PAIRS = 9
MAX_SCAN_ROWS = 160
MAX_SCAN_COLS = 60


@dataclass(frozen=True)
class MonthBand:
    row: int
    start_col: int
    tokens: Tuple[str, ...]


def is_sequential(tokens: Sequence[str], min_pairs: int = MIN_SEQUENTIAL_PAIRS) -> bool:
    """True when at least `min_pairs` adjacent tokens are exactly one month apart."""
    if len(tokens) != BAND_LENGTH:
        return False
    return sequential_pairs(tokens) >= min_pairs


def _tokens_from(grid: Grid, row: int, col: int) -> Optional[List[str]]:
    tokens: List[str] = []
    for offset in range(BAND_LENGTH):
        token = coerce_month_token(cell_at(grid, row, col + offset))
        if token is None:
            return None
        tokens.append(token)
    return tokens


def locate_month_band(
    grid: Grid,
    max_rows: int = MAX_SCAN_ROWS,
    max_cols: int = MAX_SCAN_COLS,
) -> Optional[MonthBand]:
    """
    Find the first row-major run of 12 consecutive month cells whose tokens are
    sequential. Returns None when the scanned window holds no such band.
    """
    for r in range(min(len(grid), max_rows)):
        width = min(len(grid[r]), max_cols)
        for c in range(max(0, width - BAND_LENGTH + 1)):
            tokens = _tokens_from(grid, r, c)
            if tokens is None:
                continue
            if not is_sequential(tokens):
                logger.debug("Non-sequential month run at row %s col %s: %s", r + 1, c + 1, tokens)
                continue
            logger.debug("Month band at row %s col %s (%s .. %s)", r + 1, c + 1, tokens[0], tokens[-1])
            return MonthBand(row=r, start_col=c, tokens=tuple(tokens))
    return None
