"""Google Sheets destination table."""

from __future__ import annotations

from typing import Any, Callable

import httplib2
from google.auth.exceptions import RefreshError
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import Resource, build
from googleapiclient.errors import HttpError
from loguru import logger

from leadsync.application.ports.destination import DestinationFactory, RowValues
from leadsync.domain.errors import (
    AuthError,
    DestinationError,
    DestinationNotFoundError,
    DestinationPermissionError,
    TransientExternalError,
)
from leadsync.infrastructure.google.credentials import CredentialManager

# Access token -> Sheets v4 service
ServiceBuilder = Callable[[str], Resource]

# RAW keeps "+1555..." as text so key lookups compare exact strings
VALUE_INPUT_OPTION = "RAW"


def build_sheets_service(access_token: str) -> Resource:
    """Sheets v4 service bound to a bare access token.

    The transport never refreshes on its own; a 401 surfaces as ``HttpError``.
    """
    creds = Credentials(token=access_token)
    http = AuthorizedHttp(creds, http=httplib2.Http(), refresh_status_codes=())
    return build("sheets", "v4", http=http, cache_discovery=False)


def translate_http_error(error: HttpError, table_id: str, action: str) -> Exception:
    """Map a Sheets API error onto the pipeline's error taxonomy."""
    status = int(getattr(error.resp, "status", 0) or 0)
    reason = getattr(error, "reason", None) or str(error)

    if status == 401:
        return AuthError(f"Google rejected the access token while {action} sheet {table_id}")
    if status == 403:
        return DestinationPermissionError(table_id, action)
    if status == 404:
        return DestinationNotFoundError(table_id)
    if status == 429 or status >= 500:
        return TransientExternalError(
            f"Google Sheets unavailable while {action} sheet {table_id}: {reason}",
            status_code=status,
        )
    return DestinationError(
        f"Google Sheets request failed while {action} sheet {table_id}: {reason}",
        {"table_id": table_id, "status_code": status},
    )


class GoogleSheetsDestination:
    """Destination table backed by the Sheets v4 values API, bound to one tenant."""

    def __init__(
        self,
        tenant_id: str,
        credentials: CredentialManager,
        service_builder: ServiceBuilder = build_sheets_service,
    ):
        self.tenant_id = tenant_id
        self.credentials = credentials
        self.service_builder = service_builder

    def get_range(self, table_id: str, range_: str) -> list[list[Any]]:
        def call(token: str) -> list[list[Any]]:
            response = self._execute(
                token,
                table_id,
                "reading",
                lambda values: values.get(spreadsheetId=table_id, range=range_),
            )
            return response.get("values", [])

        return self.credentials.call_with_credential(self.tenant_id, call)

    def append(self, table_id: str, range_: str, values: list[RowValues]) -> None:
        def call(token: str) -> None:
            response = self._execute(
                token,
                table_id,
                "appending to",
                lambda api: api.append(
                    spreadsheetId=table_id,
                    range=range_,
                    valueInputOption=VALUE_INPUT_OPTION,
                    insertDataOption="INSERT_ROWS",
                    body={"values": values},
                ),
            )
            logger.debug(f"Append response for sheet {table_id}: {response.get('updates', {}).get('updatedRange')}")

        self.credentials.call_with_credential(self.tenant_id, call)

    def update(self, table_id: str, range_: str, values: list[RowValues]) -> None:
        def call(token: str) -> None:
            response = self._execute(
                token,
                table_id,
                "updating",
                lambda api: api.update(
                    spreadsheetId=table_id,
                    range=range_,
                    valueInputOption=VALUE_INPUT_OPTION,
                    body={"values": values},
                ),
            )
            logger.debug(f"Update response for sheet {table_id}: {response.get('updatedRange')}")

        self.credentials.call_with_credential(self.tenant_id, call)

    def _execute(self, token: str, table_id: str, action: str, request: Callable[[Any], Any]) -> dict:
        service = self.service_builder(token)
        try:
            return request(service.spreadsheets().values()).execute() or {}
        except HttpError as e:
            logger.error(f"Error {action} sheet {table_id}: {e}")
            raise translate_http_error(e, table_id, action) from e
        except RefreshError as e:
            logger.error(f"Access token rejected {action} sheet {table_id}: {e}")
            raise AuthError(f"Google rejected the access token while {action} sheet {table_id}") from e
        except (httplib2.HttpLib2Error, OSError) as e:
            logger.error(f"Network error {action} sheet {table_id}: {e}")
            raise TransientExternalError(f"Network error {action} sheet {table_id}: {e}") from e


def sheets_destination_factory(
    credentials: CredentialManager,
    service_builder: ServiceBuilder = build_sheets_service,
) -> DestinationFactory:
    """Bind the Sheets destination to the credential manager, per tenant."""

    def factory(tenant_id: str) -> GoogleSheetsDestination:
        return GoogleSheetsDestination(tenant_id, credentials, service_builder)

    return factory
