"""
Field-level encryption for sensitive database columns.

Wraps a SecurityManager so models can store OAuth tokens and sync cursors
encrypted, while still reading rows written before encryption was enabled.
"""

import logging
from typing import Optional

from data.security.encryption import DecryptionError, SecurityManager


logger = logging.getLogger("dashsync.database.encryption")

ENCRYPTED_PREFIX = "enc:v1:"


class DatabaseEncryptionHelper:
    """
    Helper for encrypting/decrypting sensitive database fields.

    Encrypted values carry ``ENCRYPTED_PREFIX`` so plain legacy values can be
    told apart and passed through unchanged.
    """

    def __init__(self, security_manager: SecurityManager):
        self.security_manager = security_manager
        logger.info("Database encryption helper initialized")

    def encrypt_field(self, value: Optional[str]) -> Optional[str]:
        """Encrypt a value; None and "" are stored as-is."""
        if value is None or value == "":
            return value
        if self.is_encrypted(value):
            return value
        return ENCRYPTED_PREFIX + self.security_manager.encrypt(value)

    def decrypt_field(self, stored_value: Optional[str]) -> Optional[str]:
        """
        Decrypt a stored value.

        Values without the prefix are returned unchanged.

        Raises:
            DecryptionError: The value is marked encrypted but the key does not match
        """
        if not self.is_encrypted(stored_value):
            return stored_value

        try:
            return self.security_manager.decrypt(stored_value[len(ENCRYPTED_PREFIX):])
        except DecryptionError:
            logger.error("Failed to decrypt stored field; was the salt or machine id changed?")
            raise

    @staticmethod
    def is_encrypted(value: Optional[str]) -> bool:
        return bool(value) and value.startswith(ENCRYPTED_PREFIX)
