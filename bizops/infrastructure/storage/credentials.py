"""
Credential resolution for Google Cloud Storage.

Sources are tried in a fixed order and the first one configured wins:

1. GOOGLE_APPLICATION_CREDENTIALS: path to a service account JSON key.
2. GCS_PRIVATE_KEY (with GCS_PROJECT_ID and GCS_CLIENT_EMAIL): the same
   key passed inline, for hosts where mounting a file is awkward.
3. Application default credentials from the environment (gcloud login,
   GCE metadata server, workload identity).

The third tier can't sign URLs everywhere, but it keeps existence
checks and reads working on GCP without any configuration.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from google.cloud import storage as gcs
from google.oauth2 import service_account

from ...config.settings import Settings

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"


class CredentialSource(Enum):
    KEY_FILE = "key_file"
    INLINE_KEY = "inline_key"
    APPLICATION_DEFAULT = "application_default"


@dataclass(frozen=True)
class GCSCredentials:
    """Which credential source won, plus what it needs to build a client."""
    source: CredentialSource
    key_file: Optional[str] = None
    project_id: Optional[str] = None
    client_email: Optional[str] = None
    private_key: Optional[str] = None

    def service_account_info(self) -> dict:
        return {
            "type": "service_account",
            "project_id": self.project_id,
            "client_email": self.client_email,
            "private_key": self.private_key,
            "token_uri": GOOGLE_TOKEN_URI,
        }


def resolve_gcs_credentials(settings: Settings) -> GCSCredentials:
    """Walk the credential chain and return the first configured source."""
    if settings.google_application_credentials:
        return GCSCredentials(
            source=CredentialSource.KEY_FILE,
            key_file=settings.google_application_credentials,
        )

    if settings.gcs_private_key:
        # Env files and dashboards usually store the PEM with literal \n
        private_key = settings.gcs_private_key.replace("\\n", "\n")
        return GCSCredentials(
            source=CredentialSource.INLINE_KEY,
            project_id=settings.gcs_project_id,
            client_email=settings.gcs_client_email,
            private_key=private_key,
        )

    return GCSCredentials(source=CredentialSource.APPLICATION_DEFAULT)


def build_gcs_client(credentials: GCSCredentials) -> gcs.Client:
    """Construct a google-cloud-storage client for the resolved source."""
    logger.info(
        "Creating GCS client",
        extra={"credential_source": credentials.source.value}
    )

    if credentials.source == CredentialSource.KEY_FILE:
        return gcs.Client.from_service_account_json(credentials.key_file)

    if credentials.source == CredentialSource.INLINE_KEY:
        sa_credentials = service_account.Credentials.from_service_account_info(
            credentials.service_account_info()
        )
        return gcs.Client(project=credentials.project_id, credentials=sa_credentials)

    return gcs.Client()
