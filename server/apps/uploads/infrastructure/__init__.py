"""Infrastructure layer for uploads app.

This package contains integrations with external systems:
- Staging store written by the tus transfer engine
- Tus ``Upload-Metadata`` decoding and typed upload metadata

Keep infrastructure concerns separate from business logic.
"""
