"""
Encryption of target passwords at rest.

Uses Fernet symmetric encryption with a key derived from the Flask SECRET_KEY.
"""

import base64
from cryptography.fernet import Fernet
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC


class SecretCipher:
    """
    Handles encryption/decryption of database passwords using SECRET_KEY as master key.
    """

    def __init__(self, secret_key: str):
        """
        Initialize with Flask SECRET_KEY.

        Args:
            secret_key: Flask app SECRET_KEY (from config or /data/.secret_key)
        """
        # Fixed salt: SECRET_KEY itself is the secret
        fixed_salt = b'dbshield_target_secret_salt_v1'

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=fixed_salt,
            iterations=480000,
        )

        key = base64.urlsafe_b64encode(kdf.derive(secret_key.encode()))
        self._fernet = Fernet(key)

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a password for persistent storage.

        Args:
            plaintext: Password in plaintext

        Returns:
            Base64-encoded encrypted password
        """
        encrypted_bytes = self._fernet.encrypt(plaintext.encode())
        return base64.urlsafe_b64encode(encrypted_bytes).decode()

    def decrypt(self, encrypted: str) -> str:
        """
        Decrypt a stored password.

        Args:
            encrypted: Base64-encoded encrypted password

        Returns:
            Plaintext password

        Raises:
            cryptography.fernet.InvalidToken: If decryption fails (wrong key or corrupted data)
        """
        encrypted_bytes = base64.urlsafe_b64decode(encrypted.encode())
        decrypted_bytes = self._fernet.decrypt(encrypted_bytes)
        return decrypted_bytes.decode()


def get_secret_cipher(app) -> SecretCipher:
    """
    Factory function to create SecretCipher from Flask app config.

    Args:
        app: Flask application instance

    Returns:
        SecretCipher instance

    Raises:
        RuntimeError: If SECRET_KEY not configured
    """
    secret_key = app.config.get('SECRET_KEY')

    if not secret_key:
        raise RuntimeError("SECRET_KEY not configured - cannot initialize SecretCipher")

    return SecretCipher(secret_key)
