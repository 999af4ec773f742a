"""Sequential CI pipeline runner with scoped credential binding and Meterian scans."""

__version__ = "1.0.0"
