from datetime import datetime
from typing import Any, Dict, Optional
from libris.core.models import NotificationPriority
from libris.schemas.common import LibrisModel


class Notification(LibrisModel):
    id: int
    type: str
    title: str
    message: str
    data: Optional[Dict[str, Any]] = None
    priority: NotificationPriority
    is_read: bool
    created_at: Optional[datetime] = None
