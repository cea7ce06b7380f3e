from sqlalchemy import Column, String, Text

from collabcore.db.base import BaseModel


class CollaborationRecord(BaseModel):
    __tablename__ = "collaboration_records"

    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)  # JSON
