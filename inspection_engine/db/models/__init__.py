from inspection_engine.db.models.findings import FindingChangeLog, FindingDimensionOverride

__all__ = [
    "FindingDimensionOverride",
    "FindingChangeLog",
]
