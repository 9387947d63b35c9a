from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from typing import Annotated
from jose import JWTError, jwt
from pydantic import ValidationError
from app.core.config import SECRET_KEY, ALGORITHM, JWT_ISSUER, JWT_AUDIENCE
from app.domain.auth.schemas import TokenPayload, Actor
from app.domain.exceptions import Unauthorized, Forbidden
from app.core.ctx import ACTOR_ROLES_CTX, ACTOR_ID_CTX


oauth2_bearer = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


async def get_token_payload(token: Annotated[str | None, Depends(oauth2_bearer)]) -> TokenPayload:
    if not token:
        raise Unauthorized("Not authenticated", ctx={"reason": "missing_token"})
    try:
        raw_payload = jwt.decode(
            token,
            SECRET_KEY,
            algorithms=[ALGORITHM],
            issuer=JWT_ISSUER,
            audience=JWT_AUDIENCE,
            options={"verify_aud": True, "leeway": 5}
        )
        if raw_payload.get("typ", "access") != "access":
            raise Unauthorized("Invalid token type", ctx={"reason": "invalid_type"})
        return TokenPayload.model_validate(raw_payload)
    except (JWTError, ValidationError):
        raise Unauthorized("Invalid authentication credentials", ctx={"reason": "invalid_token"})


def actor_from_payload(payload: TokenPayload) -> Actor:
    try:
        actor_id = int(payload.sub)
    except ValueError:
        raise Unauthorized("Invalid subject", ctx={"reason": "invalid_subject"})
    return Actor(id=actor_id, email=payload.email, name=payload.name, roles=frozenset(payload.roles))


def get_current_actor_with_roles(*allowed_roles: str):
    allowed = set(allowed_roles)

    async def _inner(payload: Annotated[TokenPayload, Depends(get_token_payload)]) -> Actor:
        actor = actor_from_payload(payload)
        ACTOR_ROLES_CTX.set(tuple(sorted(actor.roles)))
        ACTOR_ID_CTX.set(actor.id)

        if allowed and actor.roles.isdisjoint(allowed):
            raise Forbidden("Permission denied", ctx={"required": list(allowed_roles), "user_roles": list(actor.roles)})
        return actor
    return _inner


get_current_actor = get_current_actor_with_roles()
