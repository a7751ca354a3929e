"""
RBAC (Role-Based Access Control) application.

Provides:
- Role and permission definitions (seeded at bootstrap)
- Permission resolution for accounts through their roles
- The fixed authorization policy for account management
"""
