"""Reusable persistence patterns shared by the verticals.

The async repository layer lives here: generic tenant-scoped CRUD and the
translation of database connectivity failures into retryable errors.
"""
