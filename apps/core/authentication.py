"""
Custom DRF authentication classes.
"""
from rest_framework.authentication import BaseAuthentication, get_authorization_header
from rest_framework.exceptions import AuthenticationFailed


class JWTAuthentication(BaseAuthentication):
    """
    Authenticate requests carrying ``Authorization: Bearer <token>``.

    Tokens are issued by AuthService.generate_jwt. Soft-deleted users are
    rejected even when their token is still valid.
    """

    keyword = b'bearer'

    def authenticate(self, request):
        """
        Return (user, payload) for a valid bearer token.

        Returns:
            tuple: (user, payload) if a token is present and valid, None if no token
        """
        auth = get_authorization_header(request).split()
        if not auth or auth[0].lower() != self.keyword:
            return None

        if len(auth) != 2:
            raise AuthenticationFailed('Invalid authorization header.')

        from apps.rbac.services import AuthService

        token = auth[1].decode('utf-8', errors='ignore')
        payload = AuthService.validate_jwt(token)
        if payload is None:
            raise AuthenticationFailed('Invalid or expired token.')

        user = AuthService.get_user_from_payload(payload)
        if user is None:
            raise AuthenticationFailed('User not found or deleted.')

        return (user, payload)

    def authenticate_header(self, request):
        return 'Bearer'
