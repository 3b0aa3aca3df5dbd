import pytest
from django.urls import reverse
from rest_framework.test import APIClient

from clinic.models import AuditEvent, User

pytestmark = pytest.mark.django_db


def login(client, username, password):
    return client.post(reverse('login_view'), {'username': username, 'password': password}, format='json')


def test_login_returns_jwt_and_legacy_token(admin_user, warehouse):
    r = login(APIClient(), 'admin1', 'P@ssw0rd1')
    assert r.status_code == 200
    assert r.data['ok'] is True
    assert r.data['token'] and r.data['jwt_access'] and r.data['jwt_refresh']
    assert r.data['role'] == 'admin'
    assert r.data['warehouse']['warehouseCode'] == 'MAIN'
    admin_user.refresh_from_db()
    assert admin_user.last_login is not None


def test_no_role_bypass_in_login(doctor):
    client = APIClient()
    r = client.post(reverse('login_view'),
                    {'username': 'doc1', 'password': 'P@ssw0rd1', 'role': 'super'}, format='json')
    assert r.status_code == 200
    assert r.data['role'] == 'doctor'
    doctor.refresh_from_db()
    assert doctor.role == 'doctor'


def test_wrong_password_is_rejected_and_audited(admin_user):
    r = login(APIClient(), 'admin1', 'wrong-password')
    assert r.status_code == 401
    assert r.data['ok'] is False
    assert r.data['error']['code'] == 'authentication_failed'
    assert AuditEvent.objects.filter(action='login', detail__result='fail').exists()


def test_soft_deleted_user_cannot_login(admin_user):
    admin_user.is_deleted = True
    admin_user.save()
    r = login(APIClient(), 'admin1', 'P@ssw0rd1')
    assert r.status_code == 401


def test_missing_credentials_is_bad_request():
    r = APIClient().post(reverse('login_view'), {'username': 'someone'}, format='json')
    assert r.status_code == 400
    assert r.data['ok'] is False


def test_legacy_token_authenticates_requests(admin_user):
    client = APIClient()
    token = login(client, 'admin1', 'P@ssw0rd1').data['token']
    assert client.get('/api/student').status_code == 401
    client.credentials(HTTP_AUTHORIZATION=f'Token {token}')
    assert client.get('/api/student').status_code == 200


def test_refresh_returns_new_access_token(admin_user):
    client = APIClient()
    refresh = login(client, 'admin1', 'P@ssw0rd1').data['jwt_refresh']
    r = client.post(reverse('jwt_refresh_view'), {'refresh': refresh}, format='json')
    assert r.status_code == 200
    assert r.data['jwt_access']


def test_logout_blacklists_refresh_token(admin_user):
    client = APIClient()
    data = login(client, 'admin1', 'P@ssw0rd1').data
    client.credentials(HTTP_AUTHORIZATION=f"Token {data['token']}")
    r = client.post(reverse('jwt_logout_view'), {'refresh': data['jwt_refresh']}, format='json')
    assert r.status_code == 200
    assert r.data['blacklisted'] == 1


class TestVerifyPassword:
    url = '/api/auth/verify-password'

    def test_match(self, super_user):
        r = APIClient().post(self.url, {'userId': super_user.id, 'password': 'P@ssw0rd1'}, format='json')
        assert r.status_code == 200
        assert r.data['ok'] is True

    def test_mismatch(self, super_user):
        r = APIClient().post(self.url, {'userId': super_user.id, 'password': 'nope'}, format='json')
        assert r.status_code == 401

    def test_unknown_or_non_super_user(self, admin_user):
        r = APIClient().post(self.url, {'userId': admin_user.id, 'password': 'P@ssw0rd1'}, format='json')
        assert r.status_code == 404
        r = APIClient().post(self.url, {'userId': 999999, 'password': 'x'}, format='json')
        assert r.status_code == 404

    def test_missing_field(self, super_user):
        r = APIClient().post(self.url, {'userId': super_user.id}, format='json')
        assert r.status_code == 400


def test_token_of_deleted_user_is_rejected(admin_user):
    client = APIClient()
    token = login(client, 'admin1', 'P@ssw0rd1').data['token']
    User.objects.filter(id=admin_user.id).update(is_deleted=True)
    client.credentials(HTTP_AUTHORIZATION=f'Token {token}')
    assert client.get('/api/student').status_code == 401
