"""Bearer credential verification for the remote store."""

import logging

import jwt

from intake_ledger.utils.exceptions import AuthenticationError, AuthenticationRequiredError
from intake_ledger.utils.parameters import AuthConfig

logger = logging.getLogger(__name__)


class TokenVerifier:
    """
    Verifies signed JWT bearer credentials and resolves the owning user id.

    The ``sub`` claim identifies the user; it becomes the ``user_id`` every
    remote row is scoped to.
    """

    def __init__(self, config: AuthConfig) -> None:
        self.config = config

    def verify(self, credential: str | None) -> str:
        """
        Verify a bearer credential.

        Args:
            credential: Raw token, optionally prefixed with ``"Bearer "``.

        Returns:
            The authenticated user id.

        Raises:
            AuthenticationRequiredError: If no credential was given.
            AuthenticationError: If the credential is invalid or not allowed.
        """
        if not credential or not credential.strip():
            raise AuthenticationRequiredError()
        if not self.config.jwt_secret:
            raise AuthenticationError("Credential verification is not configured")

        token = credential.strip().removeprefix("Bearer ").strip()
        options = {"require": ["sub"], "verify_aud": self.config.audience is not None}
        try:
            claims = jwt.decode(
                token,
                self.config.jwt_secret,
                algorithms=self.config.algorithms,
                audience=self.config.audience,
                options=options,
            )
        except jwt.ExpiredSignatureError as e:
            raise AuthenticationError("Credential expired") from e
        except jwt.InvalidTokenError as e:
            logger.warning(f"Rejected bearer credential: {e}")
            raise AuthenticationError(f"Invalid credential: {e}") from e

        user_id = str(claims["sub"])
        if self.config.allowed_users and user_id not in self.config.allowed_users:
            logger.warning(f"Credential subject not allowed: {user_id}")
            raise AuthenticationError("User is not allowed to use the remote store")
        return user_id
