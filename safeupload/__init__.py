"""safeupload: content-validated, collision-free, path-contained file uploads."""

__version__ = "0.1.0"
