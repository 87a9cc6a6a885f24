from typing import Any, Dict

import jwt

from chat_relay.config import get_settings


def decode_access_token(token: str) -> Dict[str, Any]:
    """Decode a token issued by the auth service.

    Raises ``jwt.InvalidTokenError`` when the token is malformed, expired or
    signed with another key.
    """
    settings = get_settings()
    payload = jwt.decode(
        token,
        settings.jwt_secret.get_secret_value(),
        algorithms=[settings.jwt_algorithm],
    )
    if not payload.get("sub"):
        raise jwt.InvalidTokenError("token has no subject")
    return payload
