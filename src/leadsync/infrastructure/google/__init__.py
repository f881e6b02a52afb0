"""Google OAuth credentials and Sheets destination."""

from leadsync.infrastructure.google.credentials import CredentialManager, ValidCredential
from leadsync.infrastructure.google.crypto import TokenCipher
from leadsync.infrastructure.google.oauth import GoogleOAuthProvider
from leadsync.infrastructure.google.sheets import GoogleSheetsDestination, sheets_destination_factory

__all__ = [
    "CredentialManager",
    "ValidCredential",
    "TokenCipher",
    "GoogleOAuthProvider",
    "GoogleSheetsDestination",
    "sheets_destination_factory",
]
