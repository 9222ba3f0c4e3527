"""Request identity.

Authentication happens in front of this service; the gateway forwards the
signed-in user's identity as headers.
"""

from fastapi import Depends, Header, HTTPException, status
from pydantic import BaseModel
from typing_extensions import Annotated

_PROVIDER_PREFIXES = ("github_", "google_", "email_")


def extract_user_id(prefixed_user_id: str) -> str:
    """Strip the auth-provider prefix, e.g. ``github_123`` -> ``123``."""
    for prefix in _PROVIDER_PREFIXES:
        if prefixed_user_id.startswith(prefix):
            return prefixed_user_id[len(prefix):]
    return prefixed_user_id


class CurrentUser(BaseModel):
    id: str
    email: str | None = None
    name: str | None = None


async def get_current_user(
    x_user_id: str | None = Header(default=None),
    x_user_email: str | None = Header(default=None),
    x_user_name: str | None = Header(default=None),
) -> CurrentUser:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized"
        )
    return CurrentUser(
        id=extract_user_id(x_user_id.strip()),
        email=x_user_email or None,
        name=x_user_name or None,
    )


CurrentUserDep = Annotated[CurrentUser, Depends(get_current_user)]
