"""Supabase Auth credential gateway."""

from dataclasses import dataclass

import httpx
from supabase import AuthApiError, AuthRetryableError, Client

from inspection_capture.domain.errors import AuthError, AuthErrorReason
from inspection_capture.domain.sessions import AuthIdentity
from inspection_capture.services.session_guard import AuthGateway


@dataclass
class SupabaseAuthGateway(AuthGateway):
    """Password sign-in against Supabase Auth."""

    client: Client

    def sign_in(self, email: str, password: str) -> AuthIdentity:
        """Verify credentials and return the signed-in account."""
        try:
            response = self.client.auth.sign_in_with_password(
                {"email": email, "password": password}
            )
        except (AuthRetryableError, httpx.TransportError) as exc:
            raise AuthError(AuthErrorReason.NETWORK_FAILURE) from exc
        except AuthApiError as exc:
            raise AuthError(
                AuthErrorReason.INVALID_CREDENTIALS, exc.message or None
            ) from exc
        user = response.user
        if user is None:
            raise AuthError(AuthErrorReason.INVALID_CREDENTIALS)
        return AuthIdentity(account_id=str(user.id), email=user.email or email)

    def sign_out(self) -> None:
        """End the Supabase auth session held by this client."""
        self.client.auth.sign_out()
