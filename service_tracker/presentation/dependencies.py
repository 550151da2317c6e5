"""FastAPI dependencies resolving the per-process context and the caller."""

from collections.abc import Generator
from typing import Annotated

from fastapi import Depends, Header, Request
from sqlmodel import Session

from ..config import Settings
from ..context import AppContext
from ..domain.entities import Identity
from ..domain.exceptions import AccessDeniedError, UnauthenticatedError
from ..infrastructure.database.database import session_scope
from ..infrastructure.database.repositories import AccessRepository
from ..infrastructure.telegram import TelegramGateway


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def get_settings(context: Annotated[AppContext, Depends(get_context)]) -> Settings:
    return context.settings


def get_session(
    context: Annotated[AppContext, Depends(get_context)],
) -> Generator[Session, None, None]:
    yield from session_scope(context.engine)


def get_gateway(
    context: Annotated[AppContext, Depends(get_context)],
) -> TelegramGateway:
    return context.gateway


def get_identity(
    x_auth_uid: Annotated[str | None, Header()] = None,
    x_auth_email: Annotated[str | None, Header()] = None,
    x_auth_name: Annotated[str | None, Header()] = None,
    x_auth_picture: Annotated[str | None, Header()] = None,
) -> Identity:
    """Caller identity as asserted by the trusted authentication front."""
    uid = (x_auth_uid or "").strip()
    if not uid:
        raise UnauthenticatedError("Authentication required.")
    return Identity(
        uid=uid,
        email=(x_auth_email or "").strip(),
        display_name=(x_auth_name or "").strip(),
        photo_url=(x_auth_picture or "").strip(),
    )


def require_staff(
    identity: Annotated[Identity, Depends(get_identity)],
    session: Annotated[Session, Depends(get_session)],
) -> Identity:
    """Active allowlist membership is the only authorization predicate."""
    if not AccessRepository(session).is_active_staff(identity.uid):
        raise AccessDeniedError("Access not approved for this account.")
    return identity


SessionDep = Annotated[Session, Depends(get_session)]
SettingsDep = Annotated[Settings, Depends(get_settings)]
GatewayDep = Annotated[TelegramGateway, Depends(get_gateway)]
IdentityDep = Annotated[Identity, Depends(get_identity)]
StaffDep = Annotated[Identity, Depends(require_staff)]
