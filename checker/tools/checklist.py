from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Optional

from google.api_core import exceptions as gcp_exceptions
from google.auth import default as google_auth_default
from google.auth import exceptions as auth_exceptions
from google.cloud import storage
from google.oauth2 import service_account

from checker.errors import ConfigurationError, RetrievalError


logger = logging.getLogger(__name__)

READ_ONLY_SCOPES = ["https://www.googleapis.com/auth/devstorage.read_only"]


@dataclass(frozen=True)
class ChecklistLocation:
    """Where the checklist object lives: bucket, object name and credential."""

    bucket: str
    blob: str
    credentials_file: Optional[str] = None
    project: Optional[str] = None

    def __str__(self) -> str:
        return f"gs://{self.bucket}/{self.blob}"


def _build_creds(credentials_file: Optional[str] = None):
    key_path = credentials_file or os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")
    try:
        if key_path:
            if not os.path.exists(key_path):
                raise ConfigurationError(
                    f"Storage credentials file not found: {key_path}",
                    details={"credentials_file": key_path},
                )
            return service_account.Credentials.from_service_account_file(
                key_path, scopes=READ_ONLY_SCOPES
            )
        creds, _ = google_auth_default(scopes=READ_ONLY_SCOPES)
        return creds
    except (auth_exceptions.DefaultCredentialsError, ValueError, OSError) as exc:
        raise ConfigurationError(f"Invalid storage credentials: {exc}") from exc


def _download_checklist(location: ChecklistLocation) -> bytes:
    creds = _build_creds(location.credentials_file)
    client = storage.Client(project=location.project, credentials=creds)
    try:
        blob = client.bucket(location.bucket).blob(location.blob)
        # Whole object from offset zero; no range reads.
        return blob.download_as_bytes()
    except gcp_exceptions.NotFound as exc:
        raise RetrievalError(
            f"Checklist not found: {location}",
            details={"bucket": location.bucket, "blob": location.blob},
        ) from exc
    except (gcp_exceptions.Unauthorized, gcp_exceptions.Forbidden) as exc:
        raise RetrievalError(
            f"Access to checklist denied: {location}",
            details={"bucket": location.bucket, "blob": location.blob},
        ) from exc
    except (gcp_exceptions.GoogleAPIError, auth_exceptions.GoogleAuthError, OSError) as exc:
        raise RetrievalError(f"Checklist download failed: {exc}") from exc
    finally:
        client.close()


async def fetch_checklist(location: ChecklistLocation, encoding: str = "utf-8") -> str:
    """Read the whole checklist object and decode it to text.

    Every call hits the object store; there is no cache and no retry.

    Raises:
        ConfigurationError: credentials are missing or unreadable
        RetrievalError: the object is missing, access is denied, the network
            failed, or the content does not decode
    """
    data = await asyncio.to_thread(_download_checklist, location)
    try:
        content = data.decode(encoding)
    except (UnicodeDecodeError, LookupError) as exc:
        raise RetrievalError(f"Checklist at {location} is not valid {encoding}: {exc}") from exc
    logger.info("Fetched checklist %s (%s chars)", location, len(content))
    return content
