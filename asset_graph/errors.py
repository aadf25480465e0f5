"""
Exception types for the asset-graph build.

Fatal errors (DataError, PartialWriteFailure, RowSourceError) abort the run
with a non-zero exit status. CycleDetected and MissingCoordinate are
recoverable and handled inside the stage that raises them.
"""


class AssetGraphError(RuntimeError):
    """Base class for build errors."""


class DataError(AssetGraphError):
    """Input rows are missing required columns or values."""

    def __init__(self, message: str, missing: tuple = ()):
        self.missing = tuple(missing)
        super().__init__(message)


class CycleDetected(AssetGraphError):
    """An ownership walk tried to revisit an entity already on the path."""

    def __init__(self, entity_id: str, path: list):
        self.entity_id = entity_id
        self.path = list(path)
        super().__init__(
            f"Ownership cycle at {entity_id} (path: {' -> '.join(self.path)})"
        )


class MissingCoordinate(AssetGraphError):
    """A point has no usable latitude/longitude."""


class PartialWriteFailure(AssetGraphError):
    """An output file could not be staged or published."""


class RowSourceUnavailable(AssetGraphError):
    """Transient row-source failure (network, timeout). Safe to retry."""


class RowSourceError(AssetGraphError):
    """The row source failed permanently or ran out of retries."""
