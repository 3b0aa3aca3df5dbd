from rest_framework import serializers

from clinic.models import User

ROLES = [r for r, _ in User.ROLE_CHOICES]


class UserCreateSerializer(serializers.Serializer):
    username = serializers.CharField(max_length=150)
    email = serializers.EmailField(required=False, allow_blank=True)
    password = serializers.CharField(write_only=True, trim_whitespace=False)
    role = serializers.ChoiceField(choices=ROLES, required=False)
    phone = serializers.CharField(max_length=32, required=False, allow_blank=True)
    warehouse = serializers.CharField(max_length=64, required=False, allow_blank=True, allow_null=True)


class UserUpdateSerializer(UserCreateSerializer):
    username = serializers.CharField(max_length=150, required=False)
    password = serializers.CharField(write_only=True, required=False, allow_blank=True, trim_whitespace=False)


class UserDeleteSerializer(serializers.Serializer):
    deletedBy = serializers.CharField(max_length=150)


class PasswordResetSerializer(serializers.Serializer):
    newPassword = serializers.CharField(min_length=6, trim_whitespace=False)
    resetBy = serializers.CharField(max_length=150)
