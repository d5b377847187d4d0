"""
Accounts for Aivora: registration, login and bearer tokens.
"""

from .security import create_access_token, decode_access_token, hash_password, verify_password
from .service import AccountService, public_user

__all__ = [
    "AccountService",
    "public_user",
    "hash_password",
    "verify_password",
    "create_access_token",
    "decode_access_token",
]
