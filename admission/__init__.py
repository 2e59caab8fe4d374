"""Admission gate for the database-cluster control plane.

Two independent services composed by `admission.controller`:
- `admission.rbac`: resource catalog, live-reloading policy store, enforcer
- `admission.validation`: per-object-kind business-rule checks
"""
