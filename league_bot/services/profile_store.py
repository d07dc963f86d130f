"""
Encrypted player profile fields.

Real name, email and phone are stored as ``iv:ciphertext:tag`` with each part
base64 encoded, sealed with AES-256-GCM under ENCRYPTION_KEY_HEX.
"""

import base64
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from league_bot.config import Config

_IV_BYTES = 12
_TAG_BYTES = 16


class ProfileEncryptionError(Exception):
    """Raised when the key is missing or a stored value cannot be decrypted"""
    pass


class ProfileCipher:
    def __init__(self, key_hex: Optional[str] = None):
        key_hex = key_hex if key_hex is not None else Config.ENCRYPTION_KEY_HEX
        if not key_hex or len(key_hex) != 64:
            raise ProfileEncryptionError('ENCRYPTION_KEY_HEX must be set to 64 hex characters (32 bytes).')
        try:
            self._aesgcm = AESGCM(bytes.fromhex(key_hex))
        except ValueError as e:
            raise ProfileEncryptionError(f'ENCRYPTION_KEY_HEX is not valid hex: {e}')

    def encrypt(self, plaintext: Optional[str]) -> Optional[str]:
        if plaintext is None:
            return None
        iv = os.urandom(_IV_BYTES)
        sealed = self._aesgcm.encrypt(iv, str(plaintext).encode('utf-8'), None)
        # cryptography appends the tag to the ciphertext
        ciphertext, tag = sealed[:-_TAG_BYTES], sealed[-_TAG_BYTES:]
        return ':'.join(base64.b64encode(part).decode('ascii') for part in (iv, ciphertext, tag))

    def decrypt(self, payload: Optional[str]) -> Optional[str]:
        if not payload:
            return None
        parts = str(payload).split(':')
        if len(parts) != 3 or not all(parts):
            return None
        try:
            iv, ciphertext, tag = (base64.b64decode(part) for part in parts)
            return self._aesgcm.decrypt(iv, ciphertext + tag, None).decode('utf-8')
        except (InvalidTag, ValueError) as e:
            raise ProfileEncryptionError(f'Could not decrypt profile field: {e}')
