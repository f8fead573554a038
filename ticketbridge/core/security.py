from jose import jwt

from ticketbridge.core.config import settings

ALGO = "HS256"


def decode_token(token: str) -> dict:
    # Tokens are issued by the auth service; this process only verifies them.
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGO])
