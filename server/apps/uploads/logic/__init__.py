"""Business logic layer for uploads app.

This package contains the upload completion reconciliation pipeline:
- Filename sanitizing, collision resolution and target paths
- Pre-upload duplicate guard
- Single-file publishing and multi-part reassembly
- Part group tracking and orphan reaping

All business logic should be implemented here, separate from
views (HTTP layer) and infrastructure (external systems).
"""
