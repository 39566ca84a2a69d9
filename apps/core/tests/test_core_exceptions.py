"""
Tests for domain exceptions, the DRF exception handler and request ids.
"""
import pytest
from rest_framework.exceptions import ValidationError

from apps.core.exceptions import (
    AuthorizationDenied, CriticalStateDetected, EntityHasDependents, EntityNotFound,
    LastAdministratorViolation, SelfDeletionViolation, custom_exception_handler,
)


@pytest.mark.parametrize('exc_class,status_code,code', [
    (AuthorizationDenied, 403, 'AUTHORIZATION_DENIED'),
    (LastAdministratorViolation, 409, 'LAST_ADMINISTRATOR'),
    (SelfDeletionViolation, 400, 'SELF_DELETION'),
    (EntityHasDependents, 409, 'ENTITY_HAS_DEPENDENTS'),
    (EntityNotFound, 404, 'ENTITY_NOT_FOUND'),
    (CriticalStateDetected, 503, 'CRITICAL_STATE'),
])
def test_domain_errors_map_to_status(exc_class, status_code, code, request_factory):
    request = request_factory.get('/v1/plants')
    request.request_id = 'req-1'

    response = custom_exception_handler(exc_class('boom', details={'x': 1}), {'request': request})

    assert response.status_code == status_code
    assert response.data == {'error': 'boom', 'code': code, 'details': {'x': 1}, 'request_id': 'req-1'}


def test_details_omitted_when_empty(request_factory):
    response = custom_exception_handler(AuthorizationDenied('no'), {'request': request_factory.get('/')})

    assert response.data == {'error': 'no', 'code': 'AUTHORIZATION_DENIED'}


def test_drf_errors_keep_default_handling(request_factory):
    request = request_factory.post('/v1/plants')
    request.request_id = 'req-2'

    response = custom_exception_handler(ValidationError({'name': ['required']}), {'request': request})

    assert response.status_code == 400
    assert response.data['name'] == ['required']
    assert response.data['request_id'] == 'req-2'


def test_unhandled_errors_become_500(request_factory):
    response = custom_exception_handler(RuntimeError('kaboom'), {'request': request_factory.get('/')})

    assert response.status_code == 500
    assert response.data['error'] == 'Internal server error'
    assert 'kaboom' not in str(response.data)


@pytest.mark.django_db
class TestRequestIDMiddleware:

    def test_generated_request_id(self, api_client, admin):
        response = api_client.get('/v1/health/')

        assert response['X-Request-ID']

    def test_incoming_request_id_is_echoed(self, api_client, admin):
        response = api_client.get('/v1/health/', HTTP_X_REQUEST_ID='trace-42')

        assert response['X-Request-ID'] == 'trace-42'

    def test_request_id_lands_in_error_body(self, api_client, admin):
        api_client.force_authenticate(user=admin)

        response = api_client.get('/v1/plants/999999', HTTP_X_REQUEST_ID='trace-43')

        assert response.status_code == 404
        assert response.data['request_id'] == 'trace-43'
