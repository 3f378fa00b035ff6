from typing import Optional

from fastapi import Depends, Header

from caresupply.core.security import Actor, authenticate_request, resolve_actor
from caresupply.database.session import get_db


def require_auth(
    api_key: Optional[str] = Header(None, alias="X-API-Key"),
    api_key_alt: Optional[str] = Header(None, alias="api-key"),
    authorization: Optional[str] = Header(None),
):
    api_key_value = api_key or api_key_alt
    return authenticate_request(
        api_key=api_key_value,
        authorization=authorization,
        require_auth=True,
    )


def get_actor(
    auth=Depends(require_auth),
    institution_id: Optional[str] = Header(None, alias="X-Institution-Id"),
    user_id: Optional[str] = Header(None, alias="X-User-Id"),
    role: Optional[str] = Header(None, alias="X-User-Role"),
) -> Actor:
    return resolve_actor(auth, institution_id=institution_id, user_id=user_id, role=role)


__all__ = ["get_actor", "get_db", "require_auth"]
