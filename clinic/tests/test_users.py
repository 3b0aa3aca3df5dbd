"""
Staff account management: only super administrators may manage users.
"""
from rest_framework import status
from rest_framework.test import APIClient, APITestCase

from clinic.models import User, Warehouse


class UserManagementTests(APITestCase):
    def setUp(self) -> None:
        self.warehouse = Warehouse.objects.create(name='Main Campus Clinic', warehouse_code='MAIN')
        self.root = User.objects.create_user(username='root', password='P@ssw0rd1', role='super')
        self.admin = User.objects.create_user(username='admin1', password='P@ssw0rd1', role='admin',
                                              warehouse=self.warehouse)

    def authenticate(self, user: User) -> APIClient:
        client = APIClient()
        client.force_authenticate(user=user)
        return client

    def test_super_admin_creates_user(self):
        client = self.authenticate(self.root)
        response = client.post('/api/users', {'formData': {
            'username': 'nurse1', 'email': 'nurse1@clinic.test', 'password': 'Secret123',
            'role': 'nurse', 'phone': '08030000000', 'warehouse': 'MAIN',
        }}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        created = User.objects.get(username='nurse1')
        self.assertEqual(created.role, 'nurse')
        self.assertEqual(created.warehouse, self.warehouse)
        self.assertTrue(created.check_password('Secret123'))
        self.assertFalse(created.sync)

    def test_duplicate_username_is_rejected(self):
        client = self.authenticate(self.root)
        response = client.post('/api/users', {'formData': {
            'username': 'admin1', 'password': 'Secret123', 'role': 'admin',
        }}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error']['code'], 'userNameExist')

    def test_non_super_is_forbidden(self):
        client = self.authenticate(self.admin)
        self.assertEqual(client.get('/api/users').status_code, status.HTTP_403_FORBIDDEN)

    def test_detail_and_missing_user(self):
        client = self.authenticate(self.root)
        response = client.get(f'/api/users/{self.admin.id}')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['warehouse']['warehouseCode'], 'MAIN')
        self.assertEqual(client.get('/api/users/987654').status_code, status.HTTP_404_NOT_FOUND)

    def test_update_rejects_taken_username(self):
        User.objects.create_user(username='doc1', password='P@ssw0rd1', role='doctor')
        client = self.authenticate(self.root)
        response = client.put(f'/api/users/{self.admin.id}', {'username': 'doc1'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        response = client.put(f'/api/users/{self.admin.id}', {'phone': '0809'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.admin.refresh_from_db()
        self.assertEqual(self.admin.phone_number, '0809')

    def test_delete_requires_deleted_by_and_soft_deletes(self):
        client = self.authenticate(self.root)
        response = client.delete(f'/api/users/{self.admin.id}', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        response = client.delete(f'/api/users/{self.admin.id}', {'deletedBy': 'root'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.admin.refresh_from_db()
        self.assertTrue(self.admin.is_deleted)
        self.assertFalse(self.admin.is_active)
        ids = [u['id'] for u in client.get('/api/users').data['data']]
        self.assertNotIn(self.admin.id, ids)

    def test_cannot_delete_self(self):
        client = self.authenticate(self.root)
        response = client.delete(f'/api/users/{self.root.id}', {'deletedBy': 'root'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_reset_password(self):
        client = self.authenticate(self.root)
        url = f'/api/users/{self.admin.id}/reset-password'
        response = client.post(url, {'newPassword': '123', 'resetBy': 'root'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        response = client.post(url, {'newPassword': 'NewSecret9', 'resetBy': 'root'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.admin.refresh_from_db()
        self.assertTrue(self.admin.check_password('NewSecret9'))
