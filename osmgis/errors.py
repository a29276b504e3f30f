"""Exceptions raised inside the transformation engine.

None of these cross a public operation boundary: the operations in
:mod:`osmgis.transform` and :mod:`osmgis.layers` catch them and report a
failed :class:`~osmgis.models.LayerResult` instead.
"""


class OSMGISError(Exception):
    """Base class for all osmgis errors."""


class InvalidInput(OSMGISError):
    """Missing store handle, empty prefix or malformed parameters."""


class InvalidSpecification(InvalidInput):
    """A tag specification that is neither a key collection nor a key/value mapping."""


class InvalidProjection(InvalidInput):
    """EPSG code that is not a positive integer or is unknown to pyproj."""


class NoMatchingData(OSMGISError):
    """The filter selected nothing, or no valid geometry could be rebuilt."""


class MalformedGeometry(OSMGISError):
    """Open ring, degenerate line or otherwise unusable element geometry."""
