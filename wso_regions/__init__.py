"""
WSO region assignment and analytics package

This package centralizes region classification for scraped meets and clubs
and the polygon-based per-region metrics:
- Configuration management
- Static geography catalog
- Assignment engine and runs
- Pagination-safe repositories
- CLI utilities

The Config class is exposed at the package level for convenient imports:
    from wso_regions import Config
"""

from .config_loader import Config

__all__ = ["Config"]
