# clinic/management/commands/ensure_test_users.py
from django.contrib.auth.hashers import make_password
from django.core.management.base import BaseCommand

from clinic.models import User, Warehouse

DEMO_WAREHOUSE = ("DEMO", "Demo Campus Clinic")

TEST_SET = [
    ("super", "super"),
    ("admin1", "admin"),
    ("doctor1", "doctor"),
    ("nurse1", "nurse"),
    ("pharmacist1", "pharmacist"),
]


class Command(BaseCommand):
    help = "Ensure a demo clinic and one test user per role exist, password=123456 (idempotent)."

    def handle(self, *args, **opts):
        code, name = DEMO_WAREHOUSE
        warehouse, _ = Warehouse.objects.get_or_create(warehouse_code=code, defaults={"name": name})
        if warehouse.is_deleted:
            warehouse.is_deleted = False
            warehouse.mark_unsynced()
            warehouse.save()
        self.stdout.write(self.style.SUCCESS(f"ok: warehouse {code}"))

        for username, role in TEST_SET:
            bound = None if role == "super" else warehouse
            u, created = User.objects.get_or_create(
                username=username,
                defaults={"role": role, "password": make_password("123456"), "is_active": True, "warehouse": bound},
            )
            if not created:
                # reset password, role, binding and active state
                u.password = make_password("123456")
                u.role = role
                u.warehouse = bound
                u.is_active = True
                u.is_deleted = False
                u.mark_unsynced()
                u.save()
            self.stdout.write(self.style.SUCCESS(f"ok: {username} ({role})"))
        self.stdout.write(self.style.SUCCESS("All test users ensured."))
