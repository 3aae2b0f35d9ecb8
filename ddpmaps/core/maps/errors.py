"""Error taxonomy for the maps engine

Every failure the engine reports belongs to one of four kinds. Fetch and
resolution failures are reported to the caller as results by the drill-down
controller; export failures are raised after cleanup has run.
"""

from enum import Enum
from typing import Optional


class MapErrorKind(str, Enum):
    """The four kinds of failure the surrounding UI has to distinguish"""

    CONFIGURATION_INCOMPLETE = "configuration_incomplete"
    RESOLUTION_FAILURE = "resolution_failure"
    FETCH_FAILURE = "fetch_failure"
    EXPORT_FAILURE = "export_failure"


class MapsError(Exception):
    """Base exception for maps engine errors"""

    kind: Optional[MapErrorKind] = None

    def __init__(self, message: str, error_code: str = "MAPS_ERROR"):
        self.message = message
        self.error_code = error_code
        super().__init__(self.message)


class MapConfigurationError(MapsError):
    """Raised when a map chart is missing the fields needed to render it"""

    kind = MapErrorKind.CONFIGURATION_INCOMPLETE

    def __init__(self, message: str, missing_fields: Optional[list] = None):
        super().__init__(message, "CONFIGURATION_INCOMPLETE")
        self.missing_fields = missing_fields or []


class RegionResolutionError(MapsError):
    """Raised when a clicked feature name has no matching region"""

    kind = MapErrorKind.RESOLUTION_FAILURE

    def __init__(self, feature_name: str):
        super().__init__(f'Region "{feature_name}" not found in database', "REGION_NOT_FOUND")
        self.feature_name = feature_name


class MapFetchError(MapsError):
    """Raised when the hierarchy, geometry, overlay or chart fetch fails"""

    kind = MapErrorKind.FETCH_FAILURE

    def __init__(self, resource: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"Failed to fetch {resource}: {message}", "FETCH_FAILED")
        self.resource = resource
        self.status_code = status_code


class MapExportError(MapsError):
    """Raised when an export attempt fails; cleanup has already run"""

    kind = MapErrorKind.EXPORT_FAILURE

    def __init__(self, message: str):
        super().__init__(message, "EXPORT_FAILED")


class RenderEngineError(MapsError):
    """Raised on misuse of the namespace table or a disposed chart instance"""

    def __init__(self, message: str):
        super().__init__(message, "RENDER_ENGINE_ERROR")
