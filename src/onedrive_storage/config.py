"""Application configuration loaded from environment variables."""

import os
from dataclasses import dataclass

DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_SESSION_CONTAINER = "onedrive-upload-sessions"


@dataclass(frozen=True)
class AppConfig:
    """Centralized application configuration.

    Required fields have no defaults and will cause a KeyError at startup
    if the corresponding environment variable is missing. Tuning constants
    have sensible defaults but can be overridden via environment variables.
    """

    # Required: no defaults, fail at startup if missing
    client_id: str
    client_secret: str
    tenant_id: str
    drive_user: str

    # Optional: defaults provided, overridable via env
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT

    # Upload session persistence is opt-in; empty means disabled
    storage_connection_string: str = ""
    session_container: str = DEFAULT_SESSION_CONTAINER


def load_config() -> AppConfig:
    """Construct an AppConfig from environment variables.

    Required environment variables:
        ODS_CLIENT_ID: Azure AD application (client) ID.
        ODS_CLIENT_SECRET: Azure AD application client secret.
        ODS_TENANT_ID: Azure AD tenant ID.
        ODS_DRIVE_USER: UPN or object ID of the OneDrive user whose drive is used.

    Optional environment variables (with defaults):
        ODS_REQUEST_TIMEOUT: HTTP timeout in seconds (default: 30).
        AzureWebJobsStorage: Azure Storage connection string enabling upload
            session persistence (default: disabled).
        ODS_SESSION_CONTAINER: Blob container for persisted upload sessions.

    Returns:
        Configured AppConfig instance.
    """
    return AppConfig(
        client_id=os.environ["ODS_CLIENT_ID"],
        client_secret=os.environ["ODS_CLIENT_SECRET"],
        tenant_id=os.environ["ODS_TENANT_ID"],
        drive_user=os.environ["ODS_DRIVE_USER"],
        request_timeout=float(
            os.environ.get("ODS_REQUEST_TIMEOUT", str(DEFAULT_REQUEST_TIMEOUT))
        ),
        storage_connection_string=os.environ.get("AzureWebJobsStorage", ""),  # noqa: SIM112
        session_container=os.environ.get("ODS_SESSION_CONTAINER", DEFAULT_SESSION_CONTAINER),
    )
