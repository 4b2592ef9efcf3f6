"""Provisioning and rollback of per-database ownership roles.

Usage:
    from bbf_backup.roles import provision, rollback
"""

from bbf_backup.roles.provisioner import (
    ensure_role,
    provision,
    role_names,
    rollback,
    validate_dbname,
)

__all__ = ["ensure_role", "provision", "role_names", "rollback", "validate_dbname"]
