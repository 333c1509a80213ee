"""FastAPI dependencies for authentication.

Provides dependency injection for:
- Bearer token extraction
- Current learner id from the JWT ``sub`` claim
"""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError

from src.auth.security import decode_access_token
from src.core.context import set_learner_id


def get_token_from_header(request: Request) -> str | None:
    """Extract Bearer token from Authorization header.

    Args:
        request: FastAPI request

    Returns:
        Token string or None if not present
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None

    expected_parts = 2
    parts = auth_header.split()
    if len(parts) != expected_parts or parts[0].lower() != "bearer":
        return None

    return parts[1]


async def get_current_learner(
    token: Annotated[str | None, Depends(get_token_from_header)],
) -> UUID:
    """Get the authenticated learner id from the access token.

    Raises:
        HTTPException(401): If token is missing, invalid, expired, or its
            subject is not a UUID
    """
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access token not provided",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = decode_access_token(token)
        learner_id = UUID(str(payload["sub"]))
    except (JWTError, ValueError) as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e

    # Set learner_id in context for logging
    set_learner_id(learner_id)

    return learner_id


# Type alias for cleaner dependency injection
CurrentLearner = Annotated[UUID, Depends(get_current_learner)]
