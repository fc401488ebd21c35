from storeinsight.extract.layout import LayoutDescriptor, infer_layout
from storeinsight.extract.month_band import MonthBand, locate_month_band
from storeinsight.extract.series import NormalizeResult, extract_series, normalize_workbook

__all__ = [
    "LayoutDescriptor",
    "MonthBand",
    "NormalizeResult",
    "extract_series",
    "infer_layout",
    "locate_month_band",
    "normalize_workbook",
]
