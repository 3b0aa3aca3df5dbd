"""
Staff account management for super administrators.
"""
from __future__ import annotations

import logging
from typing import Any, Dict

from django.contrib.auth import get_user_model
from django.contrib.auth.password_validation import validate_password
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from rest_framework.exceptions import ValidationError

from clinic.exceptions import bad_request, not_found
from clinic.services.audit import log_action
from clinic.services.common import format_warehouse_brief, iso, resolve_warehouse

logger = logging.getLogger(__name__)

User = get_user_model()


def format_user(u, *, detail: bool = False) -> dict:
    data = {
        'id': u.id,
        'username': u.username,
        'email': u.email,
        'role': u.role,
        'phoneNumber': u.phone_number,
        'warehouseId': str(u.warehouse_id) if u.warehouse_id else None,
        'isActive': u.is_active,
        'createdAt': iso(u.date_joined),
    }
    if detail:
        data.update({
            'firstName': u.first_name,
            'lastName': u.last_name,
            'lastLogin': iso(u.last_login),
            'updatedAt': iso(u.updated_at),
            'sync': u.sync,
            'syncedAt': iso(u.synced_at),
            'warehouse': format_warehouse_brief(u.warehouse) if u.warehouse_id else None,
        })
    return data


def get_user(user_id: Any):
    try:
        u = User.objects.alive().select_related('warehouse').filter(id=int(user_id)).first()
    except (TypeError, ValueError):
        u = None
    if u is None:
        raise not_found('User')
    return u


def _check_password(password: str, user=None) -> None:
    try:
        validate_password(password, user=user)
    except DjangoValidationError as e:
        raise ValidationError({'password': e.messages})


@transaction.atomic
def create_user(actor, data: Dict[str, Any]):
    username = data['username'].strip()
    if User.objects.filter(username=username).exists():
        raise bad_request('Username already exists', code='userNameExist')
    email = (data.get('email') or '').strip()
    if email and User.objects.alive().filter(email__iexact=email).exists():
        raise bad_request('Email already in use', code='emailExist')
    _check_password(data['password'])
    warehouse = resolve_warehouse(data['warehouse']) if data.get('warehouse') else None
    user = User(
        username=username,
        email=email,
        role=data.get('role') or User.ROLE_ADMIN,
        phone_number=(data.get('phone') or '').strip(),
        warehouse=warehouse,
    )
    user.set_password(data['password'])
    user.mark_unsynced()
    user.save()
    log_action(user=actor, action='user_create', object_type='user', object_id=user.id,
               detail={'username': username, 'role': user.role})
    logger.info('user %s (%s) created by %s', username, user.role, getattr(actor, 'username', None))
    return user


@transaction.atomic
def update_user(actor, user, data: Dict[str, Any]):
    username = data.get('username')
    if username is not None:
        username = username.strip()
        if User.objects.filter(username=username).exclude(id=user.id).exists():
            raise bad_request('Username already exists', code='userNameExist')
        user.username = username
    email = data.get('email')
    if email is not None:
        email = email.strip()
        if email and User.objects.alive().filter(email__iexact=email).exclude(id=user.id).exists():
            raise bad_request('Email already in use', code='emailExist')
        user.email = email
    if data.get('role'):
        user.role = data['role']
    if 'phone' in data:
        user.phone_number = (data.get('phone') or '').strip()
    if 'warehouse' in data:
        user.warehouse = resolve_warehouse(data['warehouse']) if data['warehouse'] else None
    if data.get('password'):
        _check_password(data['password'], user)
        user.set_password(data['password'])
    user.mark_unsynced()
    user.save()
    log_action(user=actor, action='user_update', object_type='user', object_id=user.id,
               detail={'fields': sorted(k for k in data.keys() if k != 'password')})
    return user


def delete_user(actor, user, *, deleted_by: Any):
    if actor is not None and actor.pk == user.pk:
        raise bad_request('You cannot delete your own account', code='self_delete')
    user.is_deleted = True
    user.is_active = False
    user.mark_unsynced()
    user.save(update_fields=['is_deleted', 'is_active', 'updated_at', 'sync', 'synced_at'])
    log_action(user=actor, action='user_delete', object_type='user', object_id=user.id,
               detail={'deletedBy': str(deleted_by)})
    logger.info('user %s deleted by %s', user.username, deleted_by)
    return user


def reset_password(actor, user, *, new_password: str, reset_by: Any):
    _check_password(new_password, user)
    user.set_password(new_password)
    user.mark_unsynced()
    user.save(update_fields=['password', 'updated_at', 'sync', 'synced_at'])
    log_action(user=actor, action='password_reset', object_type='user', object_id=user.id,
               detail={'resetBy': str(reset_by)})
    return user


def verify_super_password(user_id: Any, password: str) -> bool:
    """Check ``password`` against a super administrator account.

    Raises 404 when no live super administrator has ``user_id``.
    """
    try:
        admin = User.objects.alive().filter(id=int(user_id), role=User.ROLE_SUPER).first()
    except (TypeError, ValueError):
        admin = None
    if admin is None:
        raise not_found('User')
    return admin.check_password(password)
