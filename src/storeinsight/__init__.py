"""storeinsight: spreadsheet layout inference and report generation for self-storage financials."""

__version__ = "0.4.0"
