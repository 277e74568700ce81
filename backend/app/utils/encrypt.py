from cryptography.fernet import Fernet, InvalidToken
from app.config import settings


class DecryptionError(ValueError):
    """Stored credential cannot be decrypted with the configured key."""


def get_fernet() -> Fernet:
    """Returns a Fernet instance built from settings.encryption_key."""
    return Fernet(settings.encryption_key.encode('utf-8'))

def encrypt_data(data: str) -> str:
    return get_fernet().encrypt(data.encode('utf-8')).decode('utf-8')

def decrypt_data(encrypted_data: str) -> str:
    try:
        return get_fernet().decrypt(encrypted_data.encode('utf-8')).decode('utf-8')
    except InvalidToken as e:
        raise DecryptionError("Stored API key could not be decrypted; was ENCRYPTION_KEY rotated?") from e
