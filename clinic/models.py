"""
Database models for the campus clinic backend.

Every clinical and inventory record carries the same bookkeeping columns
(see :class:`SyncedModel`): a soft-delete flag and a ``sync`` flag that is
cleared on every mutation so that the offline -> online push can find the
rows that changed since the last run.
"""
from __future__ import annotations

import uuid
from decimal import Decimal

from django.contrib.auth.models import AbstractUser, UserManager
from django.db import models
from django.utils import timezone


class SyncedQuerySet(models.QuerySet):
    def alive(self):
        return self.filter(is_deleted=False)

    def pending_sync(self):
        return self.filter(sync=False)


class SyncedModel(models.Model):
    """Abstract base for rows that are pushed to the online database.

    Timestamps are plain defaults rather than ``auto_now`` so that a row
    copied into the online store keeps the values it had offline.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    sync = models.BooleanField(default=False, db_index=True)
    synced_at = models.DateTimeField(null=True, blank=True)
    is_deleted = models.BooleanField(default=False, db_index=True)
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(default=timezone.now)

    objects = SyncedQuerySet.as_manager()

    class Meta:
        abstract = True

    def mark_unsynced(self) -> None:
        self.updated_at = timezone.now()
        self.sync = False
        self.synced_at = None

    def soft_delete(self) -> None:
        self.is_deleted = True
        self.mark_unsynced()
        self.save(update_fields=['is_deleted', 'updated_at', 'sync', 'synced_at'])


class Warehouse(SyncedModel):
    """A clinic site. Staff, stock, students and consultations belong to one."""
    name = models.CharField(max_length=255)
    warehouse_code = models.CharField(max_length=50, unique=True)
    phone_number = models.CharField(max_length=32, blank=True, default='')
    email = models.EmailField(blank=True, default='')
    description = models.TextField(blank=True, default='')
    address = models.TextField(blank=True, default='')

    def __str__(self) -> str:
        return f"{self.name} ({self.warehouse_code})"


class ClinicUserManager(UserManager):
    def alive(self):
        return self.get_queryset().filter(is_deleted=False)


class User(AbstractUser):
    """Clinic staff account.

    ``super`` administrators manage every clinic; all other roles are
    scoped to the warehouse they are assigned to.
    """
    ROLE_SUPER = 'super'
    ROLE_ADMIN = 'admin'
    ROLE_DOCTOR = 'doctor'
    ROLE_NURSE = 'nurse'
    ROLE_PHARMACIST = 'pharmacist'
    ROLE_CHOICES = [
        (ROLE_SUPER, 'Super Administrator'),
        (ROLE_ADMIN, 'Administrator'),
        (ROLE_DOCTOR, 'Doctor'),
        (ROLE_NURSE, 'Nurse'),
        (ROLE_PHARMACIST, 'Pharmacist'),
    ]
    role = models.CharField(max_length=16, choices=ROLE_CHOICES, default=ROLE_ADMIN)
    phone_number = models.CharField(max_length=32, blank=True, default='')
    warehouse = models.ForeignKey(
        Warehouse, null=True, blank=True, on_delete=models.SET_NULL, related_name='users'
    )
    is_deleted = models.BooleanField(default=False, db_index=True)
    sync = models.BooleanField(default=False, db_index=True)
    synced_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(default=timezone.now)

    objects = ClinicUserManager()

    def __str__(self) -> str:
        return f"{self.username} ({self.role})"

    @property
    def is_super_admin(self) -> bool:
        return self.role == self.ROLE_SUPER

    def mark_unsynced(self) -> None:
        self.updated_at = timezone.now()
        self.sync = False
        self.synced_at = None


class Student(SyncedModel):
    """A patient of the clinic, identified by matriculation number."""
    name = models.CharField(max_length=255)
    matric_number = models.CharField(max_length=64, db_index=True)
    email = models.EmailField(blank=True, default='')
    phone = models.CharField(max_length=32, blank=True, default='')
    address = models.TextField(blank=True, default='')
    blood_group = models.CharField(max_length=8, blank=True, default='')
    genotype = models.CharField(max_length=8, blank=True, default='')
    allergies = models.TextField(blank=True, default='')
    emergency_contact = models.CharField(max_length=255, blank=True, default='')
    emergency_phone = models.CharField(max_length=32, blank=True, default='')
    department = models.CharField(max_length=255, blank=True, default='')
    level = models.CharField(max_length=32, blank=True, default='')
    date_of_birth = models.DateField(null=True, blank=True)
    medical_history = models.TextField(blank=True, default='')
    student_type = models.CharField(max_length=32, default='undergraduate')
    account_balance = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    warehouse = models.ForeignKey(Warehouse, on_delete=models.PROTECT, related_name='students')

    class Meta:
        indexes = [models.Index(fields=['warehouse', 'matric_number'])]

    def __str__(self) -> str:
        return f"{self.name} ({self.matric_number})"


class Product(SyncedModel):
    """A medicine held in stock at one clinic."""
    name = models.CharField(max_length=255)
    barcode = models.CharField(max_length=64, blank=True, default='', db_index=True)
    unit = models.CharField(max_length=32, blank=True, default='unit')
    quantity = models.PositiveIntegerField(default=0)
    cost = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    retail_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    wholesale_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    last_dispensed = models.DateTimeField(null=True, blank=True)
    warehouse = models.ForeignKey(Warehouse, on_delete=models.PROTECT, related_name='products')

    def __str__(self) -> str:
        return f"{self.name} x{self.quantity}"


class Consultation(SyncedModel):
    """A consultation (sale) header: who was seen, by whom, and what was paid."""
    invoice_no = models.CharField(max_length=64, unique=True)
    sub_total = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    tax_rate = models.DecimalField(max_digits=6, decimal_places=2, default=Decimal('0'))
    grand_total = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    amount_paid = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    paid_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    balance = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    notes = models.TextField(blank=True, default='')
    diagnosis = models.TextField(blank=True, default='General Consultation')
    symptoms = models.TextField(blank=True, default='')
    treatment = models.TextField(blank=True, default='')
    consultant_notes = models.TextField(blank=True, default='')
    warehouse = models.ForeignKey(Warehouse, on_delete=models.PROTECT, related_name='consultations')
    student = models.ForeignKey(
        Student, null=True, blank=True, on_delete=models.SET_NULL, related_name='consultations'
    )
    doctor = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='consultations'
    )

    class Meta:
        indexes = [models.Index(fields=['warehouse', 'created_at'])]

    def __str__(self) -> str:
        return f"consultation {self.invoice_no}"


class ConsultationItem(SyncedModel):
    consultation = models.ForeignKey(Consultation, on_delete=models.CASCADE, related_name='items')
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name='consultation_items')
    product_name = models.CharField(max_length=255, blank=True, default='')
    cost = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    selected_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    price_type = models.CharField(max_length=16, default='retail')
    quantity = models.PositiveIntegerField()
    discount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    total = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    profit = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    dosage = models.CharField(max_length=255, default='As prescribed')
    frequency = models.CharField(max_length=255, default='As needed')
    duration = models.CharField(max_length=255, default='Complete course')
    instructions = models.TextField(default='Take as directed')
    warehouse = models.ForeignKey(Warehouse, on_delete=models.PROTECT, related_name='consultation_items')

    def __str__(self) -> str:
        return f"{self.product_name} x{self.quantity}"


class PaymentMethod(SyncedModel):
    consultation = models.ForeignKey(Consultation, on_delete=models.CASCADE, related_name='payment_methods')
    method = models.CharField(max_length=32)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    warehouse = models.ForeignKey(Warehouse, on_delete=models.PROTECT, related_name='payment_methods')


class BalanceTransaction(SyncedModel):
    """Movement on a student's prepaid account."""
    TYPE_DEBIT = 'DEBIT'
    TYPE_CREDIT = 'CREDIT'
    TYPE_CHOICES = [(TYPE_DEBIT, 'Debit'), (TYPE_CREDIT, 'Credit')]

    student = models.ForeignKey(Student, on_delete=models.CASCADE, related_name='balance_transactions')
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    type = models.CharField(max_length=8, choices=TYPE_CHOICES)
    description = models.CharField(max_length=255, blank=True, default='')
    consultation = models.ForeignKey(
        Consultation, null=True, blank=True, on_delete=models.SET_NULL, related_name='balance_transactions'
    )
    balance_after = models.DecimalField(max_digits=12, decimal_places=2)
    warehouse = models.ForeignKey(Warehouse, on_delete=models.PROTECT, related_name='balance_transactions')


class Supplier(SyncedModel):
    name = models.CharField(max_length=255)
    company_name = models.CharField(max_length=255, blank=True, default='')
    email = models.EmailField(blank=True, default='')
    phone = models.CharField(max_length=32, blank=True, default='')
    address = models.TextField(blank=True, default='')
    warehouse = models.ForeignKey(Warehouse, on_delete=models.PROTECT, related_name='suppliers')

    def __str__(self) -> str:
        return self.name


class Purchase(SyncedModel):
    """Stock received from a supplier, keyed by its reference number."""
    reference_no = models.CharField(max_length=64, unique=True)
    supplier = models.ForeignKey(
        Supplier, null=True, blank=True, on_delete=models.SET_NULL, related_name='purchases'
    )
    sub_total = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    tax_rate = models.DecimalField(max_digits=6, decimal_places=2, default=Decimal('0'))
    grand_total = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    paid_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    balance = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    notes = models.TextField(blank=True, default='')
    received_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='purchases'
    )
    warehouse = models.ForeignKey(Warehouse, on_delete=models.PROTECT, related_name='purchases')

    def __str__(self) -> str:
        return f"purchase {self.reference_no}"


class PurchaseItem(SyncedModel):
    purchase = models.ForeignKey(Purchase, on_delete=models.CASCADE, related_name='items')
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name='purchase_items')
    product_name = models.CharField(max_length=255, blank=True, default='')
    cost = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    quantity = models.PositiveIntegerField()
    total = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    warehouse = models.ForeignKey(Warehouse, on_delete=models.PROTECT, related_name='purchase_items')


class Quotation(SyncedModel):
    """Priced list of medicines that has not touched stock yet."""
    STATUS_PENDING = 'pending'
    STATUS_CONVERTED = 'converted'
    STATUS_CHOICES = [(STATUS_PENDING, 'Pending'), (STATUS_CONVERTED, 'Converted')]

    quotation_no = models.CharField(max_length=64, unique=True)
    sub_total = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    tax_rate = models.DecimalField(max_digits=6, decimal_places=2, default=Decimal('0'))
    grand_total = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    notes = models.TextField(blank=True, default='')
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PENDING)
    warehouse = models.ForeignKey(Warehouse, on_delete=models.PROTECT, related_name='quotations')
    student = models.ForeignKey(
        Student, null=True, blank=True, on_delete=models.SET_NULL, related_name='quotations'
    )
    doctor = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='quotations'
    )
    converted_consultation = models.ForeignKey(
        Consultation, null=True, blank=True, on_delete=models.SET_NULL, related_name='quotations'
    )

    def __str__(self) -> str:
        return f"quotation {self.quotation_no}"


class QuotationItem(SyncedModel):
    quotation = models.ForeignKey(Quotation, on_delete=models.CASCADE, related_name='items')
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name='quotation_items')
    product_name = models.CharField(max_length=255, blank=True, default='')
    cost = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    selected_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    price_type = models.CharField(max_length=16, default='retail')
    quantity = models.PositiveIntegerField()
    discount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    total = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    warehouse = models.ForeignKey(Warehouse, on_delete=models.PROTECT, related_name='quotation_items')


class StockTracking(SyncedModel):
    """Append-only ledger of stock movements for a product."""
    ACTION_RECEIVED = 'received'
    ACTION_DISPENSED = 'dispensed'
    ACTION_RETURNED = 'returned'
    ACTION_ADJUSTED = 'adjusted'
    ACTION_EXPIRED = 'expired'
    ACTION_DAMAGED = 'damaged'
    ACTION_CHOICES = [
        (ACTION_RECEIVED, 'Received'),
        (ACTION_DISPENSED, 'Dispensed'),
        (ACTION_RETURNED, 'Returned'),
        (ACTION_ADJUSTED, 'Adjusted'),
        (ACTION_EXPIRED, 'Expired'),
        (ACTION_DAMAGED, 'Damaged'),
    ]
    # adjusted carries its own sign
    INBOUND = {ACTION_RECEIVED, ACTION_RETURNED, ACTION_ADJUSTED}
    OUTBOUND = {ACTION_DISPENSED, ACTION_EXPIRED, ACTION_DAMAGED}

    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name='stock_movements')
    action = models.CharField(max_length=16, choices=ACTION_CHOICES, db_index=True)
    quantity = models.IntegerField()
    previous_stock = models.IntegerField(default=0)
    new_stock = models.IntegerField(default=0)
    staff = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='stock_movements'
    )
    patient = models.ForeignKey(
        Student, null=True, blank=True, on_delete=models.SET_NULL, related_name='stock_movements'
    )
    reason = models.CharField(max_length=255, blank=True, default='')
    ip_address = models.CharField(max_length=64, blank=True, default='')
    user_agent = models.CharField(max_length=512, blank=True, default='')
    timestamp = models.DateTimeField(default=timezone.now, db_index=True)
    warehouse = models.ForeignKey(Warehouse, on_delete=models.PROTECT, related_name='stock_movements')

    class Meta:
        indexes = [models.Index(fields=['warehouse', 'product', 'timestamp'])]

    @classmethod
    def signed_delta(cls, action: str, quantity: int) -> int:
        if action in cls.OUTBOUND:
            return -abs(quantity)
        if action == cls.ACTION_ADJUSTED:
            return quantity
        return abs(quantity)


class SuspiciousActivity(SyncedModel):
    SEVERITY_LOW = 'low'
    SEVERITY_MEDIUM = 'medium'
    SEVERITY_HIGH = 'high'
    SEVERITY_CHOICES = [
        (SEVERITY_LOW, 'Low'),
        (SEVERITY_MEDIUM, 'Medium'),
        (SEVERITY_HIGH, 'High'),
    ]
    TYPE_EXCESSIVE_DISPENSING = 'excessive_dispensing'

    staff = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='suspicious_activities'
    )
    product = models.ForeignKey(
        Product, null=True, blank=True, on_delete=models.SET_NULL, related_name='suspicious_activities'
    )
    warehouse = models.ForeignKey(Warehouse, on_delete=models.PROTECT, related_name='suspicious_activities')
    activity_type = models.CharField(max_length=64)
    description = models.TextField(blank=True, default='')
    severity = models.CharField(max_length=8, choices=SEVERITY_CHOICES, default=SEVERITY_MEDIUM, db_index=True)
    timestamp = models.DateTimeField(default=timezone.now, db_index=True)
    resolved = models.BooleanField(default=False)
    resolution = models.TextField(blank=True, default='')
    resolved_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='resolved_activities'
    )
    resolved_at = models.DateTimeField(null=True, blank=True)


class AuditEvent(models.Model):
    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    action = models.CharField(max_length=64)
    object_type = models.CharField(max_length=64, blank=True, null=True)
    object_id = models.CharField(max_length=64, blank=True, null=True)
    detail = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['action', 'created_at']),
            models.Index(fields=['object_type', 'object_id', 'created_at']),
        ]
