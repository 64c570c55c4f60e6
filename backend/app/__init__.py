"""FileVault — multi-tenant file storage backend."""

__version__ = "0.3.0"
