"""
Staff account endpoints. Super administrators only.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.permissions import IsSuperAdmin
from clinic.serializers.users import (
    PasswordResetSerializer,
    UserCreateSerializer,
    UserDeleteSerializer,
    UserUpdateSerializer,
)
from clinic.services import users as svc
from clinic.services.common import json_body


def _form(request) -> dict:
    # the admin UI nests the fields under formData
    return json_body(request.data).get('formData', request.data)


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, IsSuperAdmin])
def users_collection(request):
    if request.method == 'GET':
        rows = svc.User.objects.alive().order_by('-date_joined')
        return Response({'ok': True, 'data': [svc.format_user(u) for u in rows]})
    s = UserCreateSerializer(data=_form(request))
    s.is_valid(raise_exception=True)
    user = svc.create_user(request.user, s.validated_data)
    return Response({'ok': True, 'data': svc.format_user(user, detail=True)}, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsSuperAdmin])
def users_online(request):
    rows = svc.User.objects.alive().select_related('warehouse').order_by('username')
    return Response({'ok': True, 'data': [svc.format_user(u, detail=True) for u in rows]})


@api_view(['GET', 'PUT', 'DELETE'])
@permission_classes([IsAuthenticated, IsSuperAdmin])
def user_detail(request, user_id: int):
    user = svc.get_user(user_id)
    if request.method == 'GET':
        return Response({'ok': True, 'data': svc.format_user(user, detail=True)})
    if request.method == 'PUT':
        s = UserUpdateSerializer(data=_form(request), partial=True)
        s.is_valid(raise_exception=True)
        user = svc.update_user(request.user, user, s.validated_data)
        return Response({'ok': True, 'data': svc.format_user(user, detail=True)})
    s = UserDeleteSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    svc.delete_user(request.user, user, deleted_by=s.validated_data['deletedBy'])
    return Response({'ok': True, 'message': 'User deleted'})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsSuperAdmin])
def user_reset_password(request, user_id: int):
    user = svc.get_user(user_id)
    s = PasswordResetSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    svc.reset_password(request.user, user, new_password=s.validated_data['newPassword'],
                       reset_by=s.validated_data['resetBy'])
    return Response({'ok': True, 'message': 'Password reset'})
