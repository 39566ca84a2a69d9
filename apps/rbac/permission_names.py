"""
Permission name codec.

Permission names are stored as plain strings and must keep their exact
format for compatibility with existing grants:

    {resource}.{action}.{entityId}              sectors.view.42
    {resource}.{action}.{scopeType}.{scopeId}   assets.create.plant.7
    system.{action}-{resource}                  system.create-sectors

Everything else in the project works with PermissionName values; parsing
and formatting only happen here.
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Resource(str, Enum):
    PLANTS = 'plants'
    AREAS = 'areas'
    SECTORS = 'sectors'
    ASSETS = 'assets'
    USERS = 'users'
    SHIFTS = 'shifts'
    ASSET_TYPES = 'asset-types'
    MANUFACTURERS = 'manufacturers'
    AUDIT_LOGS = 'audit-logs'


class Action(str, Enum):
    VIEW = 'view'
    VIEW_ANY = 'viewAny'
    CREATE = 'create'
    UPDATE = 'update'
    DELETE = 'delete'
    MANAGE = 'manage'
    MANAGE_SHIFTS = 'manage-shifts'
    EXECUTE_ROUTINES = 'execute-routines'
    IMPORT = 'import'
    EXPORT = 'export'
    INVITE = 'invite'
    BULK_IMPORT = 'bulk-import'
    BULK_EXPORT = 'bulk-export'


class ScopeType(str, Enum):
    PLANT = 'plant'
    AREA = 'area'
    SECTOR = 'sector'
    ASSET = 'asset'


SYSTEM_PREFIX = 'system'

# Resources whose single-id form is anchored at a hierarchy entity
RESOURCE_SCOPES = {
    Resource.PLANTS: ScopeType.PLANT,
    Resource.AREAS: ScopeType.AREA,
    Resource.SECTORS: ScopeType.SECTOR,
    Resource.ASSETS: ScopeType.ASSET,
}

# Broader actions that imply the key action
SUBSUMING_ACTIONS = {
    Action.VIEW: (Action.VIEW, Action.VIEW_ANY, Action.MANAGE),
    Action.CREATE: (Action.CREATE, Action.MANAGE),
    Action.UPDATE: (Action.UPDATE, Action.MANAGE),
}

_ID_PATTERN = re.compile(r'^[1-9][0-9]*$')

# Longest first so 'bulk-import' wins over shorter prefixes
_SYSTEM_ACTIONS = sorted((a.value for a in Action), key=len, reverse=True)


def _enum_value(enum_cls, value):
    try:
        return enum_cls(value)
    except ValueError:
        return None


def subsuming_actions(action):
    """Actions that grant ``action``, including itself."""
    return SUBSUMING_ACTIONS.get(action, (action,))


@dataclass(frozen=True)
class Scope:
    type: Optional[ScopeType]
    id: int


@dataclass(frozen=True)
class PermissionName:
    """
    Parsed permission name.

    ``scope`` is None only for system permissions. ``qualified`` records
    whether the scope type is written out (four-part form).
    """
    resource: Resource
    action: Action
    scope: Optional[Scope] = None
    qualified: bool = False

    @classmethod
    def for_entity(cls, resource, action, entity_id):
        resource = Resource(resource)
        return cls(
            resource=resource,
            action=Action(action),
            scope=Scope(RESOURCE_SCOPES.get(resource), int(entity_id)),
        )

    @classmethod
    def scoped(cls, resource, action, scope_type, scope_id):
        return cls(
            resource=Resource(resource),
            action=Action(action),
            scope=Scope(ScopeType(scope_type), int(scope_id)),
            qualified=True,
        )

    @classmethod
    def system(cls, action, resource):
        return cls(resource=Resource(resource), action=Action(action))

    @property
    def is_system(self):
        return self.scope is None

    @property
    def anchor(self):
        """(scope type, id) of the anchoring entity, or None."""
        if self.scope is None or self.scope.type is None:
            return None
        return (self.scope.type, self.scope.id)

    def __str__(self):
        if self.scope is None:
            return f"{SYSTEM_PREFIX}.{self.action.value}-{self.resource.value}"
        if self.qualified:
            return (
                f"{self.resource.value}.{self.action.value}."
                f"{self.scope.type.value}.{self.scope.id}"
            )
        return f"{self.resource.value}.{self.action.value}.{self.scope.id}"


def _parse_system(rest):
    for action in _SYSTEM_ACTIONS:
        prefix = action + '-'
        if rest.startswith(prefix):
            resource = _enum_value(Resource, rest[len(prefix):])
            if resource is not None:
                return PermissionName(resource=resource, action=Action(action))
    return None


def parse(name):
    """
    Parse a permission string.

    Returns:
        PermissionName, or None when the string is not a well-formed name
    """
    if not isinstance(name, str) or not name:
        return None

    parts = name.split('.')

    if parts[0] == SYSTEM_PREFIX:
        if len(parts) != 2:
            return None
        return _parse_system(parts[1])

    if len(parts) not in (3, 4):
        return None

    resource = _enum_value(Resource, parts[0])
    action = _enum_value(Action, parts[1])
    if resource is None or action is None:
        return None

    if not _ID_PATTERN.match(parts[-1]):
        return None
    entity_id = int(parts[-1])

    if len(parts) == 3:
        return PermissionName(
            resource=resource,
            action=action,
            scope=Scope(RESOURCE_SCOPES.get(resource), entity_id),
        )

    scope_type = _enum_value(ScopeType, parts[2])
    if scope_type is None:
        return None
    return PermissionName(
        resource=resource,
        action=action,
        scope=Scope(scope_type, entity_id),
        qualified=True,
    )


def is_valid(name):
    return parse(name) is not None
