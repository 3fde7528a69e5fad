"""termpost - a terminal HTTP client."""

__version__ = "0.1.0"
