from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt


ALGORITHM = "HS256"
PLAYGROUND_TOKEN_TTL = timedelta(days=1)


def create_access_token(
    secret: str,
    data: Optional[Dict[str, Any]] = None,
    expires_in: timedelta = PLAYGROUND_TOKEN_TTL,
    now: Optional[datetime] = None,
) -> str:
    to_encode = dict(data or {})

    issued_at = now or datetime.now(timezone.utc)
    to_encode.update({"iat": issued_at, "exp": issued_at + expires_in})

    return jwt.encode(to_encode, secret, algorithm=ALGORITHM)


# Raises jwt.ExpiredSignatureError / jwt.InvalidTokenError, callers map them to 401
def decode_access_token(token: str, secret: str) -> Dict[str, Any]:
    return jwt.decode(token, secret, algorithms=[ALGORITHM])
