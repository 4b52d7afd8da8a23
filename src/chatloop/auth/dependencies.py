"""FastAPI dependencies that resolve the calling principal."""

from dataclasses import dataclass

from fastapi import Cookie, Header

from chatloop.auth.service import validate_token
from chatloop.db.connection import get_conn


@dataclass(frozen=True, slots=True)
class UserContext:
    user_id: str
    role: str


def _extract_bearer(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def extract_session_token(authorization: str | None, chatloop_session: str | None) -> str | None:
    bearer = _extract_bearer(authorization)
    if bearer:
        return bearer
    if chatloop_session and chatloop_session.strip():
        return chatloop_session.strip()
    return None


def optional_auth(
    authorization: str | None = Header(default=None),
    chatloop_session: str | None = Cookie(default=None),
) -> UserContext | None:
    """The session's principal, or ``None`` when there is no valid session.

    Routes decide how to answer an anonymous caller, since the order of
    their checks is part of their contract.
    """
    raw_token = extract_session_token(authorization, chatloop_session)
    if not raw_token:
        return None
    with get_conn() as conn:
        auth_data = validate_token(conn, raw_token)
    if auth_data is None:
        return None
    user_id, role = auth_data
    return UserContext(user_id=user_id, role=role)
