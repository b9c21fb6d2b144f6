"""
Tenant authentication, permissions and quota enforcement.
"""
