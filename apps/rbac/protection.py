"""
Administrator protection.

Keeps at least one active (not soft-deleted) administrator in the system.
User deletion, force deletion and administrator role removal consult
can_perform_operation() before mutating anything; the PostgreSQL triggers
installed by apps.rbac.triggers are a second line of defense below it.
"""
import logging
from dataclasses import dataclass
from enum import Enum

from django.db import transaction

from apps.core.exceptions import CriticalStateDetected
from apps.core.logging import SecurityLogger
from apps.rbac.audit import AuditService
from apps.rbac.models import Role, User, UserRole

logger = logging.getLogger(__name__)


class ProtectedOperation(str, Enum):
    DELETE = 'delete'
    FORCE_DELETE = 'force_delete'
    REMOVE_ROLE = 'remove_role'
    REVOKE_ADMINISTRATOR = 'revoke_administrator'


@dataclass(frozen=True)
class ProtectionCheck:
    allowed: bool
    message: str = ''

    def __bool__(self):
        return self.allowed


class AdministratorProtectionService:
    """
    Guards the "at least one active administrator" invariant.

    States: normal (two or more active administrators), guarded (exactly
    one) and critical (none; detected and recovered from, never entered
    through this service).
    """

    @staticmethod
    def _administrators(include_soft_deleted=False, exclude=None):
        queryset = User.objects_with_deleted.filter(user_roles__role__is_administrator=True)
        if not include_soft_deleted:
            queryset = queryset.filter(deleted_at__isnull=True)
        if exclude is not None:
            queryset = queryset.exclude(pk=exclude.pk)
        return queryset

    @classmethod
    def _locked_administrator_ids(cls, include_soft_deleted=False, exclude=None):
        """
        Ids of matching administrators, row-locked until the surrounding
        transaction ends. Callers must be inside transaction.atomic().
        """
        queryset = cls._administrators(include_soft_deleted, exclude)
        rows = queryset.select_for_update(of=('self',)).only('id')
        return {row.id for row in rows}

    @staticmethod
    def is_administrator(user):
        return UserRole.objects.filter(user_id=user.pk, role__is_administrator=True).exists()

    @staticmethod
    def holds_other_administrator_role(user, role):
        """True if ``user`` stays an administrator once ``role`` is removed."""
        return UserRole.objects.filter(
            user_id=user.pk, role__is_administrator=True
        ).exclude(role_id=role.pk).exists()

    @classmethod
    def is_last_administrator(cls, user, include_soft_deleted=False):
        """
        True iff ``user`` is an administrator and no other administrator
        remains. Soft-deleted administrators only count when
        ``include_soft_deleted`` is set.
        """
        if not cls.is_administrator(user):
            return False

        with transaction.atomic():
            others = cls._locked_administrator_ids(include_soft_deleted, exclude=user)
        return len(others) == 0

    @classmethod
    def can_perform_operation(cls, user, operation, actor=None, role=None):
        """
        Check whether ``operation`` on ``user`` keeps an active administrator.

        Non-administrators are always allowed, and so is removing ``role``
        from a user who holds another administrator role. Call inside the
        transaction that performs the operation so the administrator rows
        stay locked.

        Args:
            user: Target of the operation
            operation: ProtectedOperation or its value
            actor: User attempting the operation, for the security log
            role: Role being removed (remove_role / revoke_administrator)

        Returns:
            ProtectionCheck(allowed, message)
        """
        operation = ProtectedOperation(operation)

        if not cls.is_administrator(user):
            return ProtectionCheck(allowed=True)

        if role is not None and operation in (
            ProtectedOperation.REMOVE_ROLE, ProtectedOperation.REVOKE_ADMINISTRATOR
        ) and cls.holds_other_administrator_role(user, role):
            return ProtectionCheck(allowed=True)

        with transaction.atomic():
            if operation == ProtectedOperation.FORCE_DELETE:
                # Only active administrators other than this one keep the system usable
                blocked = not cls._locked_administrator_ids(exclude=user)
            else:
                blocked = cls.is_last_administrator(user, include_soft_deleted=False)

        if not blocked:
            return ProtectionCheck(allowed=True)

        SecurityLogger.log_last_administrator_violation(user, operation.value, actor=actor)
        return ProtectionCheck(allowed=False, message=cls.get_protection_message(user, operation))

    @classmethod
    def get_protection_message(cls, user, operation):
        label = user.display_label
        operation = ProtectedOperation(operation)

        if operation == ProtectedOperation.DELETE:
            return (
                f"Cannot delete user {label} because they are the last active administrator "
                f"in the system. The system must always have at least one active administrator. "
                f"Please assign the administrator role to another user before deleting this one."
            )

        if operation == ProtectedOperation.FORCE_DELETE:
            soft_deleted = cls._administrators(include_soft_deleted=True, exclude=user).filter(
                deleted_at__isnull=False
            ).distinct().count()
            if soft_deleted:
                return (
                    f"Cannot permanently delete user {label} because they are the last "
                    f"administrator (including {soft_deleted} soft-deleted). The system must "
                    f"always have at least one administrator. Please restore and assign the "
                    f"administrator role to another user first."
                )
            return (
                f"Cannot permanently delete user {label} because they are the last administrator "
                f"in the system. The system must always have at least one administrator. "
                f"Please assign the administrator role to another user before permanently "
                f"deleting this one."
            )

        if operation == ProtectedOperation.REMOVE_ROLE:
            return (
                f"Cannot remove the Administrator role from user {label} because they are the "
                f"last administrator in the system. The system must always have at least one "
                f"active administrator. Please assign the administrator role to another user "
                f"before removing it from this one."
            )

        return (
            f"Cannot revoke administrator permissions from user {label} because they are the "
            f"last administrator in the system. The system must always have at least one "
            f"active administrator."
        )

    @classmethod
    def get_active_administrator_count(cls, exclude=None):
        return cls._administrators(exclude=exclude).distinct().count()

    @classmethod
    def get_all_administrators(cls):
        """Administrators including soft-deleted ones."""
        return cls._administrators(include_soft_deleted=True).distinct().order_by('id')

    @classmethod
    def is_in_critical_state(cls):
        return cls.get_active_administrator_count() == 0

    @classmethod
    def attempt_recovery(cls):
        """
        Restore the most recently soft-deleted administrator.

        Only acts in critical state.

        Returns:
            the restored User, or None
        """
        if not cls.is_in_critical_state():
            return None

        candidate = (
            cls._administrators(include_soft_deleted=True)
            .filter(deleted_at__isnull=False)
            .order_by('-deleted_at', '-id')
            .first()
        )
        if candidate is None:
            SecurityLogger.log_event(
                'administrator_recovery_failed',
                level='critical',
                total_administrators=cls.get_all_administrators().count(),
            )
            return None

        with transaction.atomic():
            candidate.restore()
            AuditService.record(
                None,
                'administrator.recovered',
                candidate,
                metadata={
                    'recovered_user_id': candidate.id,
                    'reason': 'System was in critical state with no active administrators',
                },
            )

        logger.warning(
            "Administrator recovered from critical state",
            extra={'user_id': candidate.id}
        )
        return candidate

    @classmethod
    def assert_healthy(cls):
        """
        Detect critical state and try to recover from it.

        Raises:
            CriticalStateDetected: no active administrator and none to restore
        """
        if not cls.is_in_critical_state():
            return None

        SecurityLogger.log_critical_state(0, cls.get_all_administrators().count())
        recovered = cls.attempt_recovery()
        if recovered is None:
            raise CriticalStateDetected(
                "No active administrator exists and none can be restored. "
                "Assign the Administrator role manually (e.g. with the ensure_administrator command)."
            )
        return recovered

    @classmethod
    def ensure_administrator_exists(cls):
        """
        Assign the Administrator role to the earliest active user when no
        administrator exists at all (soft-deleted ones included).

        Returns:
            the promoted User, or None when nothing had to change
        """
        if cls._administrators(include_soft_deleted=True).exists():
            return None

        role = Role.objects.administrator_roles().order_by('id').first()
        if role is None:
            logger.error("No administrator role exists; run seed_roles first")
            return None

        user = User.objects.order_by('created_at', 'id').first()
        if user is None:
            return None

        UserRole.objects.assign(user, role)
        AuditService.record(
            None,
            'user.administrator.granted',
            user,
            metadata={'reason': 'No administrator existed'},
        )
        logger.warning("Administrator role assigned to earliest user", extra={'user_id': user.id})
        return user
