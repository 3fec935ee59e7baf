"""MNNO School data-access coordination service."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("mnno-school")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
