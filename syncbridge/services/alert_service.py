# syncbridge/services/alert_service.py
import logging
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from syncbridge.core.enums import AlertSeverity, AlertType
from syncbridge.models.alert import Alert

logger = logging.getLogger(__name__)


class AlertService:
    """Records operator alerts. Delivery (email, chat) happens elsewhere."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def create_alert(
        self,
        alert_type: AlertType,
        severity: AlertSeverity,
        title: str,
        message: str = "",
        user_id: Optional[str] = None,
        source: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Alert:
        """
        Persist an alert row.

        Args:
            alert_type: Category of the alert
            severity: low, medium, high or critical
            title: Short summary
            message: Longer description
            user_id: Owner of the affected data, if any
            source: Component that raised it
            metadata: Extra structured context

        Returns:
            The stored Alert
        """
        alert = Alert(
            alert_type=AlertType(alert_type).value,
            severity=AlertSeverity(severity).value,
            title=title,
            message=message,
            user_id=user_id,
            source=source,
            alert_metadata=metadata or {},
        )
        async with self.session_factory() as session:
            session.add(alert)
            await session.commit()

        log = logger.error if alert.severity in ("high", "critical") else logger.warning
        log(f"Alert [{alert.severity}] {alert.alert_type}: {title} (user={user_id})")
        return alert

    async def list_alerts(self, user_id: Optional[str] = None, alert_type: Optional[AlertType] = None, limit: int = 100):
        query = select(Alert).order_by(Alert.triggered_at.desc()).limit(limit)
        if user_id is not None:
            query = query.where(Alert.user_id == user_id)
        if alert_type is not None:
            query = query.where(Alert.alert_type == AlertType(alert_type).value)
        async with self.session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())
