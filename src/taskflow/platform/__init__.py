"""
Taskflow Platform Services - licensing and user lifecycle.

This package provides the entitlement core of the Taskflow task/form
management application:
- License plan catalog (plans, features, plan -> feature entitlements)
- Per-tenant license seat pools
- User account lifecycle coordinated with seat consumption
- Feature gating with per-period usage quotas
"""

__version__ = "1.0.0"
__author__ = "Taskflow Team"
__email__ = "dev@taskflow.io"

__all__ = ["__version__"]
