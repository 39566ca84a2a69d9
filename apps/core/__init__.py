
# Export permission classes for easy importing
from apps.core.permissions import (
    IsAuthenticatedUser, IsAdministrator, HasSystemPermission, HasEntityPermission,
)

__all__ = ['IsAuthenticatedUser', 'IsAdministrator', 'HasSystemPermission', 'HasEntityPermission']
