"""
API tests for user administration, role assignment, audit logs and auth.
"""
import pytest

from apps.rbac.models import AuditLog, User, UserRole


@pytest.mark.django_db
class TestUserDeleteAPI:

    def test_requires_manage_users(self, api_client, user, make_user):
        target = make_user()
        api_client.force_authenticate(user=user)

        response = api_client.delete(f'/v1/users/{target.id}')

        assert response.status_code == 403

    def test_manage_users_permission(self, api_client, user, make_user, grant, system_roles):
        target = make_user()
        grant(user, 'system.manage-users')
        api_client.force_authenticate(user=user)

        response = api_client.delete(f'/v1/users/{target.id}')

        assert response.status_code == 204
        assert User.objects_with_deleted.get(pk=target.id).is_deleted

    def test_last_administrator_conflict(self, api_client, admin):
        api_client.force_authenticate(user=admin)

        response = api_client.delete(f'/v1/users/{admin.id}')

        assert response.status_code == 409
        assert response.data['code'] == 'LAST_ADMINISTRATOR'
        assert 'last active administrator' in response.data['error']

    def test_manage_users_cannot_delete_administrator(self, api_client, admin, make_admin, user, grant, system_roles):
        other = make_admin()
        grant(user, 'system.manage-users')
        api_client.force_authenticate(user=user)

        response = api_client.delete(f'/v1/users/{other.id}')

        assert response.status_code == 403
        assert response.data['code'] == 'AUTHORIZATION_DENIED'
        assert User.objects.filter(pk=other.id).exists()

    def test_self_deletion(self, api_client, admin, make_admin):
        make_admin()
        api_client.force_authenticate(user=admin)

        response = api_client.delete(f'/v1/users/{admin.id}')

        assert response.status_code == 400
        assert response.data['code'] == 'SELF_DELETION'

    def test_unknown_user(self, api_client, admin):
        api_client.force_authenticate(user=admin)

        response = api_client.delete('/v1/users/999999')

        assert response.status_code == 404

    def test_restore(self, api_client, admin, user):
        user.delete()
        api_client.force_authenticate(user=admin)

        response = api_client.post(f'/v1/users/{user.id}/restore')

        assert response.status_code == 200
        assert response.data['deleted_at'] is None


@pytest.mark.django_db
class TestForceDeleteAPI:

    def test_administrators_only(self, api_client, user, make_user, grant, system_roles):
        grant(user, 'system.manage-users')
        target = make_user()
        api_client.force_authenticate(user=user)

        response = api_client.delete(f'/v1/users/{target.id}/force')

        assert response.status_code == 403

    def test_force_delete_soft_deleted_user(self, api_client, admin, user):
        user.delete()
        api_client.force_authenticate(user=admin)

        response = api_client.delete(f'/v1/users/{user.id}/force')

        assert response.status_code == 204
        assert not User.objects_with_deleted.filter(pk=user.id).exists()


@pytest.mark.django_db
class TestRoleAssignmentAPI:

    def test_assign_role(self, api_client, admin, user, system_roles):
        viewer = system_roles['Viewer']
        api_client.force_authenticate(user=admin)

        response = api_client.post(f'/v1/users/{user.id}/roles', {'role_id': viewer.id}, format='json')

        assert response.status_code == 200
        assert 'Viewer' in response.data['user']['roles']
        assert response.data['granted_permissions'] == []

    def test_manage_users_cannot_grant_administrator(self, api_client, admin, user, grant, admin_role):
        grant(user, 'system.manage-users')
        api_client.force_authenticate(user=user)

        response = api_client.post(f'/v1/users/{user.id}/roles', {'role_id': admin_role.id}, format='json')

        assert response.status_code == 403
        assert response.data['code'] == 'AUTHORIZATION_DENIED'
        assert not UserRole.objects.filter(user=user, role=admin_role).exists()

    def test_administrator_grants_administrator(self, api_client, admin, user, admin_role):
        api_client.force_authenticate(user=admin)

        response = api_client.post(f'/v1/users/{user.id}/roles', {'role_id': admin_role.id}, format='json')

        assert response.status_code == 200
        assert UserRole.objects.filter(user=user, role=admin_role).exists()

    def test_assign_role_with_template(self, api_client, admin, user, hierarchy, system_roles):
        sector = hierarchy['sector']
        api_client.force_authenticate(user=admin)

        response = api_client.post(
            f'/v1/users/{user.id}/roles',
            {'role_id': system_roles['Sector Manager'].id, 'entity_type': 'sector', 'entity_id': sector.id},
            format='json',
        )

        assert response.status_code == 200
        assert f'sectors.update.{sector.id}' in response.data['granted_permissions']

    def test_entity_type_without_id(self, api_client, admin, user, system_roles):
        api_client.force_authenticate(user=admin)

        response = api_client.post(
            f'/v1/users/{user.id}/roles',
            {'role_id': system_roles['Viewer'].id, 'entity_type': 'sector'},
            format='json',
        )

        assert response.status_code == 400

    def test_unknown_role(self, api_client, admin, user):
        api_client.force_authenticate(user=admin)

        response = api_client.post(f'/v1/users/{user.id}/roles', {'role_id': 999999}, format='json')

        assert response.status_code == 400

    def test_template_for_missing_entity(self, api_client, admin, user, system_roles):
        api_client.force_authenticate(user=admin)

        response = api_client.post(
            f'/v1/users/{user.id}/roles',
            {'role_id': system_roles['Viewer'].id, 'entity_type': 'plant', 'entity_id': 999999},
            format='json',
        )

        assert response.status_code == 404
        assert not UserRole.objects.filter(user=user).exists()

    def test_remove_last_administrator_role(self, api_client, admin, admin_role):
        api_client.force_authenticate(user=admin)

        response = api_client.delete(f'/v1/users/{admin.id}/roles/{admin_role.id}')

        assert response.status_code == 409
        assert 'Cannot remove the Administrator role' in response.data['error']

    def test_manage_users_cannot_remove_administrator_role(self, api_client, admin, make_admin, user, grant, admin_role):
        make_admin()
        grant(user, 'system.manage-users')
        api_client.force_authenticate(user=user)

        response = api_client.delete(f'/v1/users/{admin.id}/roles/{admin_role.id}')

        assert response.status_code == 403
        assert UserRole.objects.filter(user=admin, role=admin_role).exists()

    def test_remove_role_not_held(self, api_client, admin, user, admin_role):
        api_client.force_authenticate(user=admin)

        response = api_client.delete(f'/v1/users/{user.id}/roles/{admin_role.id}')

        assert response.status_code == 404

    def test_remove_role(self, api_client, admin, user, system_roles):
        viewer = system_roles['Viewer']
        UserRole.objects.assign(user, viewer)
        api_client.force_authenticate(user=admin)

        response = api_client.delete(f'/v1/users/{user.id}/roles/{viewer.id}')

        assert response.status_code == 204
        assert not UserRole.objects.filter(user=user, role=viewer).exists()


@pytest.mark.django_db
class TestAdministratorStatusAPI:

    def test_status(self, api_client, admin, make_admin):
        make_admin().delete()
        api_client.force_authenticate(user=admin)

        response = api_client.get('/v1/administrators/status')

        assert response.status_code == 200
        assert response.data['active_administrators'] == 1
        assert response.data['total_administrators'] == 2
        assert response.data['critical'] is False

    def test_non_administrator(self, api_client, user):
        api_client.force_authenticate(user=user)

        assert api_client.get('/v1/administrators/status').status_code == 403


@pytest.mark.django_db
class TestAuditLogAPI:

    def test_requires_permission(self, api_client, user):
        api_client.force_authenticate(user=user)

        assert api_client.get('/v1/audit-logs').status_code == 403

    def test_filter_by_action(self, api_client, admin, hierarchy):
        api_client.force_authenticate(user=admin)

        response = api_client.get('/v1/audit-logs', {'action': 'asset.created'})

        assert response.status_code == 200
        assert response.data['count'] == 3
        assert {row['target_type'] for row in response.data['results']} == {'asset'}

    def test_filter_by_actor(self, api_client, admin, user, hierarchy, grant, system_roles):
        grant(user, 'system.view-audit-logs')
        api_client.force_authenticate(user=admin)
        api_client.patch(f'/v1/plants/{hierarchy["plant"].id}', {'name': 'Renamed'}, format='json')
        api_client.force_authenticate(user=user)

        response = api_client.get('/v1/audit-logs', {'actor_id': admin.id})

        assert response.data['count'] == 1
        assert response.data['results'][0]['action'] == 'plant.updated'
        assert response.data['results'][0]['user_email'] == 'admin@example.com'


@pytest.mark.django_db
class TestAuthAPI:

    def test_login(self, api_client, user):
        response = api_client.post(
            '/v1/auth/login', {'email': 'user@example.com', 'password': 'testpass123'}, format='json'
        )

        assert response.status_code == 200
        assert response.data['token']
        assert response.data['user']['email'] == 'user@example.com'

    def test_login_bad_password(self, api_client, user):
        response = api_client.post(
            '/v1/auth/login', {'email': 'user@example.com', 'password': 'wrong'}, format='json'
        )

        assert response.status_code == 401

    def test_login_validation_error(self, api_client):
        response = api_client.post('/v1/auth/login', {'email': 'not-an-email'}, format='json')

        assert response.status_code == 400

    def test_me(self, api_client, user, hierarchy, grant):
        grant(user, f'sectors.view.{hierarchy["sector"].id}')
        api_client.force_authenticate(user=user)

        response = api_client.get('/v1/auth/me')

        assert response.status_code == 200
        assert response.data['is_administrator'] is False
        assert response.data['permissions'] == [f'sectors.view.{hierarchy["sector"].id}']

    def test_deleted_user_token_rejected(self, api_client, user):
        from apps.rbac.services import AuthService

        token = AuthService.generate_jwt(user)
        user.delete()
        api_client.credentials(HTTP_AUTHORIZATION=f'Bearer {token}')

        assert api_client.get('/v1/auth/me').status_code == 401


@pytest.mark.django_db
class TestHealthAPI:

    def test_healthy(self, api_client, admin):
        response = api_client.get('/v1/health/')

        assert response.status_code == 200
        assert response.data['administrators'] == 'healthy'

    def test_critical(self, api_client, user):
        response = api_client.get('/v1/health/')

        assert response.status_code == 503
        assert response.data['administrators'] == 'critical'
        assert AuditLog.objects.count() == 0
