# carelog/models/__init__.py
from .user import User, UserRole
from .role import Role, RolePermission
from .permission import Permission
from .resident import Resident
from .medication import MedicationOrder
from .audit import AuditLog

__all__ = [
    "User",
    "UserRole",
    "Role",
    "RolePermission",
    "Permission",
    "Resident",
    "MedicationOrder",
    "AuditLog",
]
