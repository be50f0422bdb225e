"""ConstructionPro Sync - offline-first sync layer for the ConstructionPro field client."""

__version__ = "1.0.0"
