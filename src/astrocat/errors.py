# astrocat/errors.py


class AstrocatError(Exception):
    """Base class for all errors raised by the cataloging engine."""


class DbOpenFailed(AstrocatError):
    """The catalog database file could not be created or opened."""


class DbSchemaFailed(AstrocatError):
    """Creating or migrating the catalog schema failed."""


class FileUnreadable(AstrocatError):
    """The file exists but its bytes could not be read."""


class FormatUnsupported(AstrocatError):
    """No decoder exists for the file, or its pixel type is not handled."""


class DecodeFailed(AstrocatError):
    """The decoder opened the file but could not produce an image."""


class HeaderMissingRequired(DecodeFailed):
    """A required header keyword (NAXIS, NAXIS1, NAXIS2, BITPIX) is absent or invalid."""
