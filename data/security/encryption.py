# SPDX-License-Identifier: Apache-2.0
#
# Copyright (c) 2024-2025 Dashsync Contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
Encryption of secrets stored at rest.

AES-256-GCM with a key derived from a machine identifier and a per-install salt.
"""

import base64
import binascii
import logging
import os
import uuid
from pathlib import Path
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from config.app_config import get_app_dir
from config.constants import (
    ENCRYPTION_KEY_SIZE_BYTES,
    ENCRYPTION_NONCE_SIZE_BYTES,
    FILE_PERMISSION_OWNER_RW,
    KEY_DERIVATION_ITERATIONS,
    SALT_SIZE_BYTES,
)


logger = logging.getLogger("dashsync.security")


class DecryptionError(ValueError):
    """Raised when stored ciphertext cannot be decrypted with the current key."""


class SecurityManager:
    """
    Encrypts and decrypts OAuth tokens and sync cursors.

    The key never touches disk: only the salt is persisted, and the key is
    re-derived from the salt and the machine identifier on start-up.
    """

    def __init__(self, config_dir: Optional[str] = None, machine_id: Optional[str] = None):
        """
        Args:
            config_dir: Directory for the salt file. Defaults to ~/.dashsync
            machine_id: Overrides machine identifier detection
        """
        if config_dir is None:
            self.config_dir = get_app_dir()
        else:
            self.config_dir = Path(config_dir).expanduser()

        self.config_dir.mkdir(parents=True, exist_ok=True)

        self.salt_file = self.config_dir / ".salt"
        self.salt = self._get_or_create_salt()
        self._machine_id = machine_id
        self.encryption_key = self._derive_key()

        logger.info("Security manager initialized")

    def _get_machine_uuid(self) -> str:
        if self._machine_id:
            return self._machine_id

        for candidate in ("/etc/machine-id", "/var/lib/dbus/machine-id"):
            if os.path.exists(candidate):
                try:
                    with open(candidate, "r", encoding="utf-8") as f:
                        value = f.read().strip()
                    if value:
                        return value
                except OSError as e:
                    logger.warning(f"Could not read {candidate}: {e}")

        # MAC address on platforms without a machine-id file
        return str(uuid.getnode())

    def _get_or_create_salt(self) -> bytes:
        if self.salt_file.exists():
            with open(self.salt_file, "rb") as f:
                salt = f.read()
            if len(salt) == SALT_SIZE_BYTES:
                logger.debug("Loaded existing salt")
                return salt
            logger.warning("Salt file has unexpected length; regenerating")

        salt = os.urandom(SALT_SIZE_BYTES)
        with open(self.salt_file, "wb") as f:
            f.write(salt)
        os.chmod(self.salt_file, FILE_PERMISSION_OWNER_RW)

        logger.info("Created new salt")
        return salt

    def _derive_key(self) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=ENCRYPTION_KEY_SIZE_BYTES,
            salt=self.salt,
            iterations=KEY_DERIVATION_ITERATIONS,
        )
        return kdf.derive(self._get_machine_uuid().encode("utf-8"))

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a string.

        Returns:
            Base64 of nonce + ciphertext + tag, or "" for empty input
        """
        if not plaintext:
            return ""

        nonce = os.urandom(ENCRYPTION_NONCE_SIZE_BYTES)
        ciphertext = AESGCM(self.encryption_key).encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(nonce + ciphertext).decode("ascii")

    def decrypt(self, encrypted_data: str) -> str:
        """
        Decrypt a value produced by :meth:`encrypt`.

        Raises:
            DecryptionError: Malformed input or authentication failure
        """
        if not encrypted_data:
            return ""

        try:
            raw = base64.b64decode(encrypted_data.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError) as e:
            raise DecryptionError("Encrypted value is not valid base64") from e

        nonce = raw[:ENCRYPTION_NONCE_SIZE_BYTES]
        ciphertext = raw[ENCRYPTION_NONCE_SIZE_BYTES:]

        try:
            plaintext = AESGCM(self.encryption_key).decrypt(nonce, ciphertext, None)
        except InvalidTag as e:
            raise DecryptionError("Encrypted value failed authentication") from e

        return plaintext.decode("utf-8")
