"""
Token authentication for the clinic API.

Kept apart from the login views so that DRF can import the
authentication class during start-up without circular imports.
"""
from __future__ import annotations

from rest_framework import authentication, exceptions


class TokenAuthentication(authentication.TokenAuthentication):
    """``Authorization: Token <key>`` authentication for staff accounts.

    Soft-deleted staff keep their token row; reject them here so that a
    deletion takes effect immediately.
    """

    keyword = 'Token'

    def authenticate_credentials(self, key):
        user, token = super().authenticate_credentials(key)
        if getattr(user, 'is_deleted', False):
            raise exceptions.AuthenticationFailed('User inactive or deleted.')
        return user, token
