"""Free-gift vertical: tiered gift rules for Geeta Stores.

Pieces, leaf first:
- Domain dataclasses (GiftRule, ResolutionResult, money parsing)
- Pure-function tier resolver
- Tenant-scoped rule store over in-memory or SQLAlchemy persistence
- Snapshot rule cache kept coherent with the store
- Cart gift-line reconciliation
- FastAPI admin and customer routers
"""
