"""
Audit sink used by the hierarchy and user administration services.
"""
from apps.rbac.models import AuditLog


class AuditService:
    """
    Records who performed a sensitive operation.

    Recording is fire-and-forget: a failed write is logged by
    AuditLog.log_action and never raised to the caller.
    """

    @classmethod
    def record(cls, actor, action, target=None, *, target_type=None, target_id=None,
               diff=None, metadata=None, request=None):
        """
        Record an audit event.

        Args:
            actor: Acting user; None is recorded as the system actor
            action: Event name (e.g., 'sector.deleted')
            target: Affected model instance; its entity_type/pk are used
                unless target_type/target_id are given explicitly
            diff: Old/new values
            metadata: Additional context
            request: Current request, for IP, user agent and request id
        """
        if target is not None:
            if target_type is None:
                target_type = getattr(target, 'entity_type', None) or target._meta.model_name
            if target_id is None:
                target_id = target.pk

        if actor is None and request is not None:
            actor = getattr(request, 'user', None)

        return AuditLog.log_action(
            action=action,
            user=actor,
            target_type=target_type or '',
            target_id=target_id,
            diff=diff,
            metadata=metadata,
            request=request,
        )
