"""
PostgreSQL triggers that enforce the administrator invariant below the ORM.

AdministratorProtectionService rejects these operations first; the
triggers catch writes that bypass the service layer (raw SQL, queryset
updates). Installed after migrate when RBAC_INSTALL_DB_TRIGGERS is set.
"""
import logging

from django.db import connections

logger = logging.getLogger(__name__)


CHECK_ADMINISTRATOR_EXISTS = """
CREATE OR REPLACE FUNCTION check_administrator_exists()
RETURNS TRIGGER AS $$
DECLARE
    is_admin BOOLEAN;
    admin_count INTEGER;
BEGIN
    SELECT EXISTS(
        SELECT 1
        FROM user_roles ur
        INNER JOIN roles r ON r.id = ur.role_id
        WHERE ur.user_id = OLD.id
        AND r.is_administrator
    ) INTO is_admin;

    IF is_admin THEN
        SELECT COUNT(DISTINCT u.id) INTO admin_count
        FROM users u
        INNER JOIN user_roles ur ON ur.user_id = u.id
        INNER JOIN roles r ON r.id = ur.role_id
        WHERE r.is_administrator
        AND u.deleted_at IS NULL
        AND u.id != OLD.id;

        IF admin_count = 0 THEN
            IF TG_OP = 'UPDATE' THEN
                RAISE EXCEPTION 'Cannot soft delete the last administrator. The system must always have at least one active administrator.';
            ELSE
                RAISE EXCEPTION 'Cannot delete the last administrator. The system must always have at least one administrator.';
            END IF;
        END IF;
    END IF;

    IF TG_OP = 'DELETE' THEN
        RETURN OLD;
    END IF;
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;
"""

CHECK_ADMINISTRATOR_ROLE_REMOVAL = """
CREATE OR REPLACE FUNCTION check_administrator_role_removal()
RETURNS TRIGGER AS $$
DECLARE
    removes_admin BOOLEAN;
    user_deleted_at TIMESTAMP WITH TIME ZONE;
    keeps_admin BOOLEAN;
    admin_count INTEGER;
BEGIN
    SELECT is_administrator INTO removes_admin FROM roles WHERE id = OLD.role_id;
    IF removes_admin IS NOT TRUE THEN
        RETURN OLD;
    END IF;

    SELECT EXISTS(
        SELECT 1
        FROM user_roles ur
        INNER JOIN roles r ON r.id = ur.role_id
        WHERE ur.user_id = OLD.user_id
        AND ur.role_id != OLD.role_id
        AND r.is_administrator
    ) INTO keeps_admin;
    IF keeps_admin THEN
        RETURN OLD;
    END IF;

    SELECT deleted_at INTO user_deleted_at FROM users WHERE id = OLD.user_id;
    IF user_deleted_at IS NOT NULL THEN
        RETURN OLD;
    END IF;

    SELECT COUNT(DISTINCT u.id) INTO admin_count
    FROM users u
    INNER JOIN user_roles ur ON ur.user_id = u.id
    INNER JOIN roles r ON r.id = ur.role_id
    WHERE r.is_administrator
    AND u.deleted_at IS NULL
    AND u.id != OLD.user_id;

    IF admin_count = 0 THEN
        RAISE EXCEPTION 'Cannot remove Administrator role from the last active administrator. The system must always have at least one active administrator.';
    END IF;

    RETURN OLD;
END;
$$ LANGUAGE plpgsql;
"""

TRIGGERS = [
    (
        'ensure_administrator_on_soft_delete',
        'users',
        """
        CREATE TRIGGER ensure_administrator_on_soft_delete
        BEFORE UPDATE ON users
        FOR EACH ROW
        WHEN (OLD.deleted_at IS NULL AND NEW.deleted_at IS NOT NULL)
        EXECUTE FUNCTION check_administrator_exists();
        """,
    ),
    (
        'ensure_administrator_on_delete',
        'users',
        """
        CREATE TRIGGER ensure_administrator_on_delete
        BEFORE DELETE ON users
        FOR EACH ROW
        EXECUTE FUNCTION check_administrator_exists();
        """,
    ),
    (
        'ensure_administrator_on_role_removal',
        'user_roles',
        """
        CREATE TRIGGER ensure_administrator_on_role_removal
        BEFORE DELETE ON user_roles
        FOR EACH ROW
        EXECUTE FUNCTION check_administrator_role_removal();
        """,
    ),
]


def install_administrator_triggers(using='default'):
    """
    Create (or replace) the trigger functions and triggers.

    Returns:
        bool: False when the database is not PostgreSQL
    """
    connection = connections[using]
    if connection.vendor != 'postgresql':
        return False

    with connection.cursor() as cursor:
        cursor.execute(CHECK_ADMINISTRATOR_EXISTS)
        cursor.execute(CHECK_ADMINISTRATOR_ROLE_REMOVAL)
        for name, table, create_sql in TRIGGERS:
            cursor.execute(f'DROP TRIGGER IF EXISTS {name} ON {table};')
            cursor.execute(create_sql)

    logger.info("Administrator protection triggers installed", extra={'database': using})
    return True


def drop_administrator_triggers(using='default'):
    connection = connections[using]
    if connection.vendor != 'postgresql':
        return False

    with connection.cursor() as cursor:
        for name, table, _ in TRIGGERS:
            cursor.execute(f'DROP TRIGGER IF EXISTS {name} ON {table};')
        cursor.execute('DROP FUNCTION IF EXISTS check_administrator_exists();')
        cursor.execute('DROP FUNCTION IF EXISTS check_administrator_role_removal();')
    return True
