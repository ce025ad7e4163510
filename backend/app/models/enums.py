"""
User roles enumeration.

Roles are asserted by the identity provider in the JWT ``role`` claim.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Operator with access to maintenance endpoints
        USER: Regular ledger owner (default role)
    """
    ADMIN = "ADMIN"
    USER = "USER"
