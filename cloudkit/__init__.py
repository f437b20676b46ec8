"""Blob storage with a local-directory back end, WSGI health checks and request logging."""

__version__ = "0.1.0"
__all__ = ["blob", "driver", "fileblob", "health", "ncsa", "requestlog", "sqlhealth", "stackdriver"]