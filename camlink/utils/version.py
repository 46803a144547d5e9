"""
Centralized Version Management for camlink

Reads version from a .build-version file when one is deployed alongside the
package, so API responses and logs report the deployed build.
"""
from pathlib import Path
import logging

from camlink import __version__

logger = logging.getLogger(__name__)


def get_version() -> str:
    """
    Read version from .build-version file.

    Searches in multiple locations to support both Docker and local development:
    - /app/.build-version (Docker container)
    - camlink/../.build-version (source checkout)

    Returns:
        Version string (e.g., "0.3.1"), the package version if no file exists
    """
    version_paths = [
        Path("/app/.build-version"),  # Docker container
        Path(__file__).parent.parent.parent / ".build-version",  # Source checkout
    ]

    for path in version_paths:
        if path.exists():
            version = path.read_text().strip()
            logger.debug(f"[Version] Loaded version {version} from {path}")
            return version

    return __version__


# Module-level constant for easy import
APP_VERSION = get_version()
