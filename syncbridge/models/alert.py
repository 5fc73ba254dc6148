# syncbridge/models/alert.py
from sqlalchemy import Column, DateTime, Integer, JSON, String, Text

from syncbridge.core.utils import utcnow
from syncbridge.database import Base


class Alert(Base):
    __tablename__ = "alerts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=True, index=True)
    alert_type = Column(String(32), nullable=False, index=True)
    severity = Column(String(16), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=True)
    source = Column(String(64), nullable=True)
    status = Column(String(16), nullable=False, default="open")
    alert_metadata = Column(JSON, nullable=False, default=dict)
    triggered_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    def __repr__(self):
        return f"<Alert(id={self.id}, type='{self.alert_type}', severity='{self.severity}', title='{self.title}')>"
