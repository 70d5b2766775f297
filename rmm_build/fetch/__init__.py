"""
Third-party dependency acquisition
"""

from .git import GitFetcher
from .manager import FetchManager, Fetcher

__all__ = ["FetchManager", "Fetcher", "GitFetcher"]
