"""Error taxonomy for GeoPackage operations."""


class GeoPackageError(Exception):
    """Base class for all errors raised by gpkg_geo."""


class SchemaValidationError(GeoPackageError):
    """The supplied schema cannot be expressed in a GeoPackage.

    Raised before any statement is executed.
    """


class ReferenceIntegrityError(GeoPackageError):
    """A catalog row this operation depends on is missing or ambiguous."""


class OrphanTableError(ReferenceIntegrityError):
    """A physical table exists without a gpkg_contents row and may not be replaced."""


class TransactionError(GeoPackageError):
    """A statement in a batch failed and the whole batch was rolled back."""


class MetadataDegradation(GeoPackageError):
    """Optional table metadata (extent, last change) could not be read.

    Logged by the metadata refresh, never raised to callers.
    """
