"""Tranga CLI - scheduled, rate-limited manga downloads for library servers."""

__app_name__ = "tranga"
__version__ = "0.4.0"

__all__ = ["__app_name__", "__version__"]
