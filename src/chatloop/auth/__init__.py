"""Session authentication package."""

from chatloop.auth.dependencies import UserContext, optional_auth
from chatloop.auth.service import create_session, issue_token, validate_token

__all__ = ["UserContext", "create_session", "issue_token", "optional_auth", "validate_token"]
