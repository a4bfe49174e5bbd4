import base64
import logging

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from config import JWT_SECRET, MESSAGE_ENCRYPTION_KEY

logger = logging.getLogger(__name__)

DECRYPTION_FAILED_PLACEHOLDER = "[Encrypted message — decryption failed]"

_DEV_KEY_SALT = b"lightoflife-message-key"


class MessageDecryptionError(Exception):
    """Stored ciphertext could not be decrypted with the configured key."""


def _derive_key(passphrase: str) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=_DEV_KEY_SALT,
        iterations=100000,
    )
    return base64.urlsafe_b64encode(kdf.derive(passphrase.encode()))


if MESSAGE_ENCRYPTION_KEY:
    ENCRYPTION_KEY = MESSAGE_ENCRYPTION_KEY.encode()
else:
    # Development only; production must set MESSAGE_ENCRYPTION_KEY
    logger.warning("MESSAGE_ENCRYPTION_KEY not set, deriving a key from JWT_SECRET")
    ENCRYPTION_KEY = _derive_key(JWT_SECRET)

fernet = Fernet(ENCRYPTION_KEY)


def encrypt_data(data: str) -> str:
    """
    Encrypt message content using Fernet symmetric encryption

    Args:
        data (str): Plaintext content

    Returns:
        str: The Fernet token, or None for empty content
    """
    if not data:
        return None

    encrypted = fernet.encrypt(data.encode())
    return encrypted.decode()


def decrypt_data(encrypted_data: str) -> str:
    """
    Decrypt content that was encrypted with Fernet

    Raises:
        MessageDecryptionError: the token is corrupt or was made with another key
    """
    if not encrypted_data:
        return None

    try:
        decrypted = fernet.decrypt(encrypted_data.encode())
    except (InvalidToken, ValueError) as e:
        raise MessageDecryptionError(str(e) or "invalid token") from e
    return decrypted.decode()
