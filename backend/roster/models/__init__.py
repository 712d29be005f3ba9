from roster.models.user import User
from roster.models.apply import Apply
from roster.models.availability import Availability
from roster.models.notification_settings import NotificationSettings
from roster.models.scheduled_notification import ScheduledNotification

__all__ = ["User", "Apply", "Availability", "NotificationSettings", "ScheduledNotification"]
