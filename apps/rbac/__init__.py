"""
RBAC (Role-Based Access Control) application.

Provides multi-tenant access control for churches with:
- A static, validated role and permission catalog
- One active role assignment per user per tenant
- Additional/restricted permission overlays (restriction always wins)
- Allow-list based role delegation
- Audit logging of every change
"""
