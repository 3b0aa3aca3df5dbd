"""
URL mappings for the clinic API.

Paths mirror the front-end's endpoint table; trailing slashes are
omitted (``APPEND_SLASH = False``).
"""
from django.urls import include, path

from .auth_views import jwt_logout_view, jwt_refresh_view, login_view, verify_password_view
from .views import (
    consultations, dashboard, health, inventory, purchases, quotations, reports, security, students, sync, users,
    warehouses,
)

urlpatterns = [
    path('metrics', include('django_prometheus.urls')),
    path('healthz', health.healthz, name='healthz'),

    # Authentication
    path('api/auth/login', login_view, name='login_view'),
    path('api/auth/refresh', jwt_refresh_view, name='jwt_refresh_view'),
    path('api/auth/logout', jwt_logout_view, name='jwt_logout_view'),
    path('api/auth/verify-password', verify_password_view, name='verify_password_view'),

    # Staff accounts
    path('api/users', users.users_collection, name='users'),
    path('api/users/online', users.users_online, name='users_online'),
    path('api/users/<int:user_id>', users.user_detail, name='user_detail'),
    path('api/users/<int:user_id>/reset-password', users.user_reset_password, name='user_reset_password'),

    # Warehouses
    path('api/warehouse', warehouses.warehouse_collection, name='warehouses'),
    path('api/warehouse/list', warehouses.warehouse_detail, name='warehouse_detail'),
    path('api/warehouse/dashboard', warehouses.warehouse_dashboard, name='warehouse_dashboard'),
    path('api/warehouse/dashboard/supaAdmin', warehouses.warehouse_dashboard_super,
         name='warehouse_dashboard_super'),
    path('api/warehouse/products/id', warehouses.warehouse_product_detail, name='warehouse_product_detail'),
    path('api/warehouse/drug-tracking', inventory.drug_tracking, name='drug_tracking'),
    path('api/warehouse/anti-theft', security.anti_theft, name='anti_theft'),
    path('api/warehouse/reports/monthly', reports.monthly_report, name='monthly_report'),
    path('api/warehouse/reports/export', reports.export_report, name='export_report'),
    path('api/warehouse/reports/clinic-export', reports.clinic_export, name='clinic_export'),

    # Inventory
    path('api/product', inventory.product_collection, name='products'),
    path('api/product/restock', inventory.product_restock, name='product_restock'),
    path('api/product/stock-tracking', inventory.product_stock_tracking, name='product_stock_tracking'),
    path('api/purchase/update-product-prices', inventory.update_product_prices, name='update_product_prices'),

    # Purchases and quotations
    path('api/purchase', purchases.purchase_collection, name='purchases'),
    path('api/purchase/<str:reference_no>', purchases.purchase_detail, name='purchase_detail'),
    path('api/quotation', quotations.quotation_collection, name='quotations'),
    path('api/quotation/convert', quotations.quotation_convert, name='quotation_convert'),
    path('api/quotation/<str:quotation_no>', quotations.quotation_detail, name='quotation_detail'),

    # Students
    path('api/student', students.student_collection, name='students'),
    path('api/student/list', students.student_list, name='student_list'),
    path('api/student/balance/<uuid:student_id>', students.student_balance, name='student_balance'),
    path('api/student/<uuid:student_id>', students.student_detail_view, name='student_detail'),
    path('api/customer', students.customer_collection, name='customers'),

    # Consultations
    path('api/consultation', consultations.consultation_collection, name='consultations'),
    path('api/consultation/list', consultations.consultation_list, name='consultation_list'),
    path('api/consultation/<str:invoice_no>', consultations.consultation_detail, name='consultation_detail'),
    path('api/sale', consultations.sale_collection, name='sales'),

    # Dashboard and sync
    path('api/dashboard/stats', dashboard.stats, name='dashboard_stats'),
    path('api/syncNew/upSync', sync.upsync, name='upsync'),
]
