"""
rmm build configuration
Fetches pinned third-party sources and plans the rmm shared library target
"""

__version__ = "0.16.0"

from .errors import ConfigurationError, DependencyFetchError, RmmBuildError, ToolchainMissingError
from .main import ConfigurePass

__all__ = [
    "ConfigurationError",
    "ConfigurePass",
    "DependencyFetchError",
    "RmmBuildError",
    "ToolchainMissingError",
    "__version__",
]
