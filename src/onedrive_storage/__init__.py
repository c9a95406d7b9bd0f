"""Async Microsoft Graph OneDrive client: paginated folder listings and chunked uploads."""

__version__ = "0.1.0"
