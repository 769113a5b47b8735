"""
Credential vault: encrypts connection secrets at rest with Fernet.

Secrets are submitted once, encrypted immediately and only decrypted for the
duration of the call that needs them. Nothing here caches plaintext.
"""

import json
import logging
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken

from core.config import settings
from core.exceptions import CredentialError

logger = logging.getLogger(__name__)


class CredentialVault:
    """Symmetric encryption of credential dictionaries"""

    def __init__(self, key: Optional[str] = None):
        if key is None:
            key = settings.CREDENTIALS_ENCRYPTION_KEY

        if not key:
            if settings.ENVIRONMENT == "production":
                raise CredentialError("CREDENTIALS_ENCRYPTION_KEY must be set in production")
            logger.warning(
                "CREDENTIALS_ENCRYPTION_KEY not set; using an ephemeral key. "
                "Stored credentials will be unreadable after restart."
            )
            key = Fernet.generate_key().decode()

        try:
            self._fernet = Fernet(key.encode() if isinstance(key, str) else key)
        except (ValueError, TypeError) as e:
            raise CredentialError(
                "Invalid credentials encryption key",
                original_exception=e
            )

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode()

    def encrypt(self, secrets: Dict[str, Any]) -> Optional[str]:
        """Encrypt a mapping of secret fields; empty mappings are stored as NULL"""
        cleaned = {k: v for k, v in secrets.items() if v not in (None, "")}
        if not cleaned:
            return None
        token = self._fernet.encrypt(json.dumps(cleaned).encode("utf-8"))
        return token.decode("ascii")

    def decrypt(self, token: Optional[str]) -> Dict[str, Any]:
        if not token:
            return {}
        try:
            plaintext = self._fernet.decrypt(token.encode("ascii"))
        except InvalidToken as e:
            raise CredentialError(
                "Stored credentials could not be decrypted",
                original_exception=e
            )
        return json.loads(plaintext.decode("utf-8"))

    def merge(self, token: Optional[str], updates: Dict[str, Any]) -> Optional[str]:
        """Re-encrypt stored secrets with updated fields (None removes a field)"""
        current = self.decrypt(token)
        for field_name, value in updates.items():
            if value is None:
                current.pop(field_name, None)
            else:
                current[field_name] = value
        return self.encrypt(current)
