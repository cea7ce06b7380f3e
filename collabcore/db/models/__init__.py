from collabcore.db.models.record import CollaborationRecord

__all__ = [
    "CollaborationRecord"
]
