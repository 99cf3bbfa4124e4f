from collections.abc import Callable
from enum import Enum
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from apps.api.services.identity import IdentityProfile


class Role(str, Enum):
    """Supported roles."""

    ADMIN = "admin"
    AGENT = "agent"
    CUSTOMER = "customer"


class User:
    """Authenticated identity as seen by the ticket routes."""

    def __init__(self, user_id: str, username: str, roles: tuple[Role, ...], display_name: str | None = None):
        self.user_id = user_id
        self.username = username
        self.display_name = display_name or username
        self.roles = roles

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)

    def has_role(self, role: Role) -> bool:
        return role in self.roles

    def to_profile(self) -> IdentityProfile:
        return IdentityProfile(id=self.user_id, display_name=self.display_name)


ANONYMOUS_USER = User(user_id="", username="anonymous", roles=())

TOKEN_USER_MAP: dict[str, User] = {
    "admin-token": User("user-admin", "admin", (Role.ADMIN, Role.AGENT, Role.CUSTOMER), display_name="Help Desk Admin"),
    "agent-token": User("user-agent", "agent", (Role.AGENT, Role.CUSTOMER), display_name="Support Agent"),
    "customer-token": User("user-customer", "customer", (Role.CUSTOMER,), display_name="Customer"),
}

bearer_scheme = HTTPBearer(auto_error=False)


def resolve_user_from_token(token: str | None) -> User:
    """Return the user associated with the provided bearer token."""

    if token is None:
        return ANONYMOUS_USER

    user = TOKEN_USER_MAP.get(token)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")
    return user


def known_profiles() -> list[IdentityProfile]:
    """Display profiles for every user the token map knows about."""

    return [user.to_profile() for user in TOKEN_USER_MAP.values()]


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    request: Request,
) -> User:
    """Very small authentication stub.

    A static token map stands in for real credential verification. The
    middleware may already have resolved the user for this request.
    """

    cached = getattr(request.state, "user", None)
    if isinstance(cached, User):
        return cached

    token = credentials.credentials if credentials is not None else None
    user = resolve_user_from_token(token)
    request.state.user = user
    return user


async def get_authenticated_user(user: Annotated[User, Depends(get_current_user)]) -> User:
    if not user.is_authenticated:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def role_required(role: Role) -> Callable[[User], User]:
    """Dependency factory ensuring the current user has the requested role."""

    async def dependency(user: Annotated[User, Depends(get_authenticated_user)]) -> User:
        if not user.has_role(role):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user

    return dependency

