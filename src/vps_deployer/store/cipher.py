"""At-rest encryption for token and environment-variable fields."""

from __future__ import annotations

import base64
from typing import Optional, Protocol, Union

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..errors import ConfigError

_SALT = b"vps-deployer:fields"


class FieldCipher(Protocol):
    def encrypt(self, plaintext: str) -> str:
        ...

    def decrypt(self, ciphertext: str) -> str:
        ...


class FernetCipher:
    """Fernet (AES-128-CBC + HMAC) over a single master key."""

    def __init__(self, key: Union[str, bytes]):
        try:
            self._fernet = Fernet(key)
        except (ValueError, TypeError) as exc:
            raise ConfigError(
                "Invalid encryption key. Generate with: "
                'python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"'
            ) from exc

    @classmethod
    def from_secret(cls, secret: str) -> "FernetCipher":
        """Derive a Fernet key from an arbitrary passphrase with PBKDF2."""
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=_SALT,
            iterations=100_000,
        )
        return cls(base64.urlsafe_b64encode(kdf.derive(secret.encode())))

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken:
            raise ValueError("Decryption failed - invalid key or corrupted data") from None


def build_cipher(encryption_key: Optional[str]) -> FernetCipher:
    if not encryption_key:
        raise ConfigError("Encryption key is not set (VPS_DEPLOYER_ENCRYPTION_KEY)")
    try:
        return FernetCipher(encryption_key)
    except ConfigError:
        return FernetCipher.from_secret(encryption_key)
