import secrets
from typing import Optional

from passlib.context import CryptContext

# Контекст для хеширования паролей ссылок
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# bcrypt учитывает только первые 72 байта
BCRYPT_MAX_BYTES = 72


def get_password_hash(password: str) -> str:
    """Хеширование пароля"""
    return pwd_context.hash(_truncate(password))


def verify_password(plain_password: Optional[str], hashed_password: str) -> bool:
    """Проверка пароля"""
    if plain_password is None:
        return False
    try:
        return pwd_context.verify(_truncate(plain_password), hashed_password)
    except ValueError:
        # Поврежденный или неизвестный формат хеша
        return False


def generate_share_token(nbytes: int = 32) -> str:
    """Генерация токена для ссылки доступа"""
    return secrets.token_urlsafe(nbytes)


def _truncate(password: str) -> str:
    encoded = password.encode("utf-8")
    if len(encoded) <= BCRYPT_MAX_BYTES:
        return password
    return encoded[:BCRYPT_MAX_BYTES].decode("utf-8", errors="ignore")
