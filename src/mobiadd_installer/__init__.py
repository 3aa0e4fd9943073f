"""Mobiadd Installer - Provision the Mobiadd automation server on a host."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("mobiadd-installer")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"  # Fallback for editable installs without metadata

from .main import main

__all__ = ["main", "__version__"]
