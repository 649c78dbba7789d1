"""Lane B governance engine: content-pinned work items, approval gates and CI tracking."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("laneb")
except PackageNotFoundError:
    # Source checkout without an installed distribution.
    __version__ = "0.0.0"

__all__ = ["__version__"]
