"""flatly - Declarative Flatpak application management."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("flatly")
except PackageNotFoundError:
    __version__ = "0+local"
