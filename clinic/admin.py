"""
Django admin registrations for the clinic models.
"""

from django.contrib import admin

from .models import (
    AuditEvent,
    BalanceTransaction,
    Consultation,
    ConsultationItem,
    PaymentMethod,
    Product,
    Purchase,
    PurchaseItem,
    Quotation,
    QuotationItem,
    StockTracking,
    Student,
    Supplier,
    SuspiciousActivity,
    User,
    Warehouse,
)


@admin.register(Warehouse)
class WarehouseAdmin(admin.ModelAdmin):
    list_display = ('warehouse_code', 'name', 'phone_number', 'is_deleted', 'sync', 'created_at')
    search_fields = ('warehouse_code', 'name')


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ('username', 'role', 'warehouse', 'is_active', 'is_deleted', 'sync')
    list_filter = ('role', 'warehouse', 'is_deleted')
    search_fields = ('username', 'email')
    exclude = ('password',)


@admin.register(Student)
class StudentAdmin(admin.ModelAdmin):
    list_display = ('name', 'matric_number', 'department', 'level', 'account_balance', 'warehouse', 'is_deleted')
    list_filter = ('warehouse', 'student_type', 'is_deleted')
    search_fields = ('name', 'matric_number', 'email', 'phone')


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ('name', 'barcode', 'quantity', 'unit', 'retail_price', 'warehouse', 'last_dispensed')
    list_filter = ('warehouse', 'is_deleted')
    search_fields = ('name', 'barcode')
    # stock only moves through the ledger
    readonly_fields = ('quantity', 'last_dispensed')


class ConsultationItemInline(admin.TabularInline):
    model = ConsultationItem
    extra = 0
    readonly_fields = ('product', 'quantity', 'total', 'profit')


class PaymentMethodInline(admin.TabularInline):
    model = PaymentMethod
    extra = 0


@admin.register(Consultation)
class ConsultationAdmin(admin.ModelAdmin):
    list_display = ('invoice_no', 'student', 'doctor', 'grand_total', 'balance', 'warehouse', 'is_deleted', 'created_at')
    list_filter = ('warehouse', 'is_deleted')
    search_fields = ('invoice_no', 'student__name', 'student__matric_number')
    inlines = [ConsultationItemInline, PaymentMethodInline]


@admin.register(BalanceTransaction)
class BalanceTransactionAdmin(admin.ModelAdmin):
    list_display = ('student', 'type', 'amount', 'balance_after', 'created_at')
    list_filter = ('type', 'warehouse')


@admin.register(StockTracking)
class StockTrackingAdmin(admin.ModelAdmin):
    list_display = ('product', 'action', 'quantity', 'previous_stock', 'new_stock', 'staff', 'timestamp')
    list_filter = ('action', 'warehouse')
    search_fields = ('product__name', 'reason')

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(SuspiciousActivity)
class SuspiciousActivityAdmin(admin.ModelAdmin):
    list_display = ('activity_type', 'severity', 'product', 'staff', 'warehouse', 'resolved', 'timestamp')
    list_filter = ('severity', 'resolved', 'warehouse')


@admin.register(AuditEvent)
class AuditEventAdmin(admin.ModelAdmin):
    list_display = ('action', 'user', 'object_type', 'object_id', 'created_at')
    list_filter = ('action', 'object_type')
    search_fields = ('object_id',)


@admin.register(Supplier)
class SupplierAdmin(admin.ModelAdmin):
    list_display = ('name', 'company_name', 'phone', 'warehouse', 'is_deleted')
    search_fields = ('name', 'company_name')


class PurchaseItemInline(admin.TabularInline):
    model = PurchaseItem
    extra = 0
    readonly_fields = ('product', 'quantity', 'cost', 'total')


@admin.register(Purchase)
class PurchaseAdmin(admin.ModelAdmin):
    list_display = ('reference_no', 'supplier', 'grand_total', 'balance', 'warehouse', 'is_deleted', 'created_at')
    list_filter = ('warehouse', 'is_deleted')
    search_fields = ('reference_no', 'supplier__name')
    inlines = [PurchaseItemInline]


class QuotationItemInline(admin.TabularInline):
    model = QuotationItem
    extra = 0


@admin.register(Quotation)
class QuotationAdmin(admin.ModelAdmin):
    list_display = ('quotation_no', 'student', 'grand_total', 'status', 'warehouse', 'created_at')
    list_filter = ('status', 'warehouse')
    search_fields = ('quotation_no', 'student__name')
    inlines = [QuotationItemInline]
