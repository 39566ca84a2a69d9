"""
Authorization resolver.

Decides whether a user may perform an action on a hierarchy entity by
combining direct grants, role grants and the entity's ancestors. There is
no explicit deny: absence of a matching grant is the only deny signal.
"""
import logging
from collections import defaultdict

from django.conf import settings
from django.core.cache import cache
from django.db.models import Q

from apps.core.exceptions import AuthorizationDenied, EntityNotFound
from apps.hierarchy.models import ENTITY_MODELS
from apps.hierarchy.services import HierarchyService
from apps.rbac import permission_names
from apps.rbac.models import Permission, Role, UserRole, permission_cache_key, invalidate_permission_cache
from apps.rbac.permission_names import Action, PermissionName, Resource, subsuming_actions

logger = logging.getLogger(__name__)


def _enum_value(enum_cls, value):
    try:
        return enum_cls(value)
    except ValueError:
        return None


class AuthorizationResolver:
    """
    Grant resolution over a user's direct and role-derived permissions.

    The effective permission set of a user is cached under
    ``perms:user:{id}`` and invalidated whenever a grant link changes.
    """

    @classmethod
    def _cache_ttl(cls):
        return getattr(settings, 'PERMISSION_CACHE_TTL', 300)

    @staticmethod
    def _is_eligible(user):
        return bool(
            user is not None
            and getattr(user, 'is_authenticated', False)
            and getattr(user, 'pk', None) is not None
            and not getattr(user, 'is_deleted', False)
        )

    @classmethod
    def _grant_state(cls, user):
        key = permission_cache_key(user.pk)
        state = cache.get(key)
        if state is not None:
            return state

        role_ids = list(UserRole.objects.filter(user_id=user.pk).values_list('role_id', flat=True))
        administrator = Role.objects.filter(id__in=role_ids, is_administrator=True).exists()

        names = set(
            Permission.objects.filter(user_permissions__user_id=user.pk)
            .values_list('name', flat=True)
        )
        names.update(
            Permission.objects.filter(role_permissions__role_id__in=role_ids)
            .values_list('name', flat=True)
        )

        state = {'administrator': administrator, 'names': sorted(names)}
        cache.set(key, state, cls._cache_ttl())
        return state

    @classmethod
    def invalidate(cls, user):
        invalidate_permission_cache([user.pk])

    @classmethod
    def effective_permission_names(cls, user):
        """Union of direct and role-derived permission names."""
        if not cls._is_eligible(user):
            return set()
        return set(cls._grant_state(user)['names'])

    @classmethod
    def is_administrator(cls, user):
        if not cls._is_eligible(user):
            return False
        return cls._grant_state(user)['administrator']

    @staticmethod
    def _parse_action(action, entity):
        """
        Split 'assets.create' style actions; bare actions use the entity's resource.

        Returns:
            (Resource, Action) or None when malformed
        """
        if not isinstance(action, str):
            return None
        if '.' in action:
            parts = action.split('.')
            if len(parts) != 2:
                return None
            resource_value, action_value = parts
        else:
            resource_value, action_value = entity.resource, action

        resource = _enum_value(Resource, resource_value)
        parsed_action = _enum_value(Action, action_value)
        if resource is None or parsed_action is None:
            return None
        return resource, parsed_action

    @staticmethod
    def _anchors(names):
        """``{scope type: {ids}}`` of every anchored permission name."""
        anchors = defaultdict(set)
        for name in names:
            parsed = permission_names.parse(name)
            if parsed is not None and parsed.anchor is not None:
                scope_type, scope_id = parsed.anchor
                anchors[scope_type.value].add(scope_id)
        return anchors

    @classmethod
    def _candidate_names(cls, resource, action, chain):
        """
        Names that grant ``resource.action`` on the first node of ``chain``.

        At every node (the entity, then its ancestors) a grant is accepted
        either scoped to the node ('assets.update.sector.4') or as the node's
        own-resource grant ('sectors.update.4'), for the action or any action
        that subsumes it.
        """
        candidates = set()
        for node in chain:
            for granted in subsuming_actions(action):
                candidates.add(str(PermissionName.scoped(resource, granted, node.entity_type, node.pk)))
                candidates.add(str(PermissionName.for_entity(node.resource, granted, node.pk)))
        return candidates

    @classmethod
    def _has_anchor_at_or_below(cls, names, entity):
        anchors = cls._anchors(names)
        if entity.pk in anchors.get(entity.entity_type, ()):
            return True
        for model, lookup in HierarchyService.descendant_lookups(entity).items():
            ids = anchors.get(model.entity_type)
            if ids and model.objects.filter(id__in=ids, **lookup).exists():
                return True
        return False

    @classmethod
    def can(cls, user, action, entity):
        """
        Decide whether ``user`` may perform ``action`` on ``entity``.

        Args:
            user: User instance
            action: 'view', 'update', ... for the entity's own resource, or
                'assets.create' style for a resource inside the entity
            entity: Plant, Area, Sector or Asset instance

        Returns:
            bool. Malformed actions and missing entities deny.
        """
        if not cls._is_eligible(user):
            return False
        if entity is None or getattr(entity, 'pk', None) is None:
            return False
        if getattr(entity, 'entity_type', None) not in ENTITY_MODELS:
            return False

        parsed = cls._parse_action(action, entity)
        if parsed is None:
            logger.warning(
                "Malformed action denied",
                extra={'user_id': user.pk, 'requested_action': repr(action)}
            )
            return False
        resource, parsed_action = parsed

        state = cls._grant_state(user)
        if state['administrator']:
            return True

        names = set(state['names'])
        chain = [entity] + HierarchyService.ancestors_of(entity)
        if names & cls._candidate_names(resource, parsed_action, chain):
            return True

        if parsed_action == Action.CREATE:
            if str(PermissionName.system(Action.CREATE, resource)) in names:
                return True

        if parsed_action == Action.VIEW and resource.value == entity.resource:
            if cls._has_anchor_at_or_below(names, entity):
                return True

        logger.debug(
            "Authorization denied",
            extra={
                'user_id': user.pk,
                'requested_action': f"{resource.value}.{parsed_action.value}",
                'entity_type': entity.entity_type,
                'entity_id': entity.pk,
            }
        )
        return False

    @classmethod
    def can_by_reference(cls, user, action, entity_type, entity_id):
        """Like can(), for a route-bound (type, id) pair. Unknown entities deny."""
        try:
            entity = HierarchyService.resolve(entity_type, entity_id)
        except EntityNotFound:
            return False
        return cls.can(user, action, entity)

    @classmethod
    def authorize(cls, user, action, entity):
        """
        Raises:
            AuthorizationDenied: when can() denies
        """
        if not cls.can(user, action, entity):
            raise AuthorizationDenied(
                f"You are not allowed to {action} this {getattr(entity, 'entity_type', 'resource')}.",
                details={'action': action}
            )

    @classmethod
    def can_create(cls, user, resource, parent=None):
        """
        Decide whether ``user`` may create a ``resource`` under ``parent``.

        With a parent, scoped create/manage grants at the parent or any of
        its ancestors count. Without one, the user needs the system
        permission or a scoped create grant somewhere.
        """
        if not cls._is_eligible(user):
            return False

        parsed_resource = _enum_value(Resource, resource)
        if parsed_resource is None:
            return False

        state = cls._grant_state(user)
        if state['administrator']:
            return True

        names = set(state['names'])
        if str(PermissionName.system(Action.CREATE, parsed_resource)) in names:
            return True

        if parent is not None:
            return cls.can(user, f"{parsed_resource.value}.{Action.CREATE.value}", parent)

        for name in names:
            parsed = permission_names.parse(name)
            if (
                parsed is not None
                and not parsed.is_system
                and parsed.resource == parsed_resource
                and parsed.action in subsuming_actions(Action.CREATE)
            ):
                return True
        return False

    @classmethod
    def has_system_permission(cls, user, name):
        if not cls._is_eligible(user):
            return False
        state = cls._grant_state(user)
        return state['administrator'] or name in state['names']

    @classmethod
    def visible_queryset(cls, user, model):
        """
        Entities of ``model`` the user may view.

        Matches can(user, 'view', entity) for every row: grants anchored at
        the entity or below it, and view-family grants at an ancestor.
        """
        if not cls._is_eligible(user):
            return model.objects.none()

        state = cls._grant_state(user)
        if state['administrator']:
            return model.objects.all()

        names = state['names']
        anchors = cls._anchors(names)

        query = Q(pk__in=anchors.get(model.entity_type, set()))

        # Anchored below: map descendant ids back up to this model
        for descendant in ENTITY_MODELS.values():
            lookup = HierarchyService.ancestor_lookups(descendant).get(model.entity_type)
            ids = anchors.get(descendant.entity_type)
            if lookup and ids:
                query |= Q(pk__in=descendant.objects.filter(id__in=ids).values(lookup))

        # View-family grants at an ancestor
        view_actions = subsuming_actions(Action.VIEW)
        ancestor_ids = defaultdict(set)
        for name in names:
            parsed = permission_names.parse(name)
            if parsed is None or parsed.anchor is None or parsed.action not in view_actions:
                continue
            if parsed.resource.value == model.resource or not parsed.qualified:
                scope_type, scope_id = parsed.anchor
                ancestor_ids[scope_type.value].add(scope_id)

        for ancestor_type, lookup in HierarchyService.ancestor_lookups(model).items():
            ids = ancestor_ids.get(ancestor_type)
            if ids:
                query |= Q(**{f'{lookup}__in': ids})

        return model.objects.filter(query)
