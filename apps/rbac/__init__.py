"""
RBAC (Role-Based Access Control) application.

Provides hierarchical access control over plants, areas, sectors and assets:
- Scope-qualified permission names generated per entity
- Role and direct permission grants with ancestor inheritance
- Administrator protection (at least one active administrator)
- Audit logging of sensitive operations
"""
