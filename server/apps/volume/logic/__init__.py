"""Business logic layer for volume app.

Directory listing and folder management over the storage root that
published uploads land in.
"""
