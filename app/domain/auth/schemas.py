from pydantic import BaseModel, ConfigDict, EmailStr
from typing import Literal


class TokenPayload(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sub: str
    iat: int
    nbf: int
    exp: int
    jti: str | None = None
    typ: Literal["access", "refresh"] | None = None
    iss: str | None = None
    aud: str | list[str] | None = None
    email: EmailStr | None = None
    name: str | None = None
    roles: list[str] = []


class Actor(BaseModel):
    """The authenticated caller. Users live in the identity provider; the engine only sees token claims."""
    model_config = ConfigDict(frozen=True)

    id: int
    email: str | None = None
    name: str | None = None
    roles: frozenset[str] = frozenset()

    @property
    def is_admin(self) -> bool:
        return "ADMIN" in self.roles
