"""Package Manager Package - external install/uninstall capability.

flatly never installs anything itself; it drives the ``flatpak`` CLI
through the PackageManager interface.
"""

from .base import PackageManager
from .flatpak import FlatpakManager, validate_package_name

__all__ = ["FlatpakManager", "PackageManager", "validate_package_name"]
