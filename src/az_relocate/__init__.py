"""Azure VM zone relocation."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("az-relocate")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
