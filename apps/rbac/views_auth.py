"""
Authentication views.

- POST /v1/auth/login: exchange email and password for a JWT
- GET /v1/auth/me: the authenticated user and their effective permissions
"""
from rest_framework import status
from rest_framework.views import APIView
from rest_framework.response import Response
from drf_spectacular.utils import extend_schema, OpenApiExample
from drf_spectacular.types import OpenApiTypes

from apps.core.logging import SecurityLogger
from apps.core.permissions import IsAuthenticatedUser
from apps.rbac.resolver import AuthorizationResolver
from apps.rbac.serializers import LoginSerializer, UserSerializer
from apps.rbac.services import AuthService


@extend_schema(
    tags=['Authentication'],
    summary='Login',
    description='''
Authenticate with email and password.

Returns a JWT for the `Authorization: Bearer <token>` header and the user.
Soft-deleted users cannot log in.

**No authentication required** - this is a public endpoint.
    ''',
    request=LoginSerializer,
    responses={
        200: OpenApiTypes.OBJECT,
        400: OpenApiTypes.OBJECT,
        401: OpenApiTypes.OBJECT,
    },
    examples=[
        OpenApiExample(
            'Login Request',
            value={
                'email': 'manager@example.com',
                'password': 'SecurePass123!'
            },
            request_only=True
        ),
        OpenApiExample(
            'Invalid Credentials',
            value={
                'error': 'Invalid email or password'
            },
            response_only=True,
            status_codes=['401']
        ),
    ]
)
class LoginView(APIView):
    """
    POST /v1/auth/login

    No authentication required.
    """
    authentication_classes = []
    permission_classes = []

    def post(self, request):
        serializer = LoginSerializer(data=request.data)

        if not serializer.is_valid():
            return Response(
                {
                    'error': 'Validation error',
                    'details': serializer.errors
                },
                status=status.HTTP_400_BAD_REQUEST
            )

        result = AuthService.login(
            email=serializer.validated_data['email'],
            password=serializer.validated_data['password']
        )

        if not result:
            SecurityLogger.log_failed_login(
                email=serializer.validated_data['email'],
                ip_address=request.META.get('REMOTE_ADDR', 'unknown'),
                user_agent=request.META.get('HTTP_USER_AGENT', 'unknown'),
                reason='Invalid credentials'
            )
            return Response(
                {
                    'error': 'Invalid email or password'
                },
                status=status.HTTP_401_UNAUTHORIZED
            )

        return Response(
            {
                'user': UserSerializer(result['user']).data,
                'token': result['token'],
                'message': 'Login successful'
            },
            status=status.HTTP_200_OK
        )


@extend_schema(
    tags=['Authentication'],
    summary='Current user',
    description='The authenticated user, whether they are an administrator, and their effective permission names.',
    responses={200: OpenApiTypes.OBJECT, 401: OpenApiTypes.OBJECT},
)
class MeView(APIView):
    """
    GET /v1/auth/me
    """
    permission_classes = [IsAuthenticatedUser]

    def get(self, request):
        user = request.user
        return Response({
            'user': UserSerializer(user).data,
            'is_administrator': AuthorizationResolver.is_administrator(user),
            'permissions': sorted(AuthorizationResolver.effective_permission_names(user)),
        })
