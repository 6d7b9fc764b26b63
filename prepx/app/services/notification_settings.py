"""Read-through access to the single notification settings row."""

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from prepx.app.models.notification_settings import NotificationSettings
from prepx.app.schemas.notification import NotificationSettingsUpdate

SETTINGS_ID = 1

DEFAULT_SETTINGS = {
    "enable_automatic_mode": False,
    "enable_fee_reminder": True,
    "enable_overdue_alert": True,
    "enable_exam_reminder": True,
    "enable_absent_alert": True,
    "enable_birthday_wish": False,
    "fee_reminder_days_before": 3,
    "exam_reminder_days_before": 1,
}


def _existing(db: Session) -> NotificationSettings | None:
    return db.get(NotificationSettings, SETTINGS_ID)


def get_settings(db: Session) -> NotificationSettings:
    """Return the settings row, creating it with defaults on first use."""
    settings = _existing(db)
    if settings:
        return settings
    settings = NotificationSettings(id=SETTINGS_ID, **DEFAULT_SETTINGS)
    db.add(settings)
    try:
        db.commit()
    except IntegrityError:
        # Another request created the row first
        db.rollback()
        return _existing(db)
    db.refresh(settings)
    return settings


def update_settings(db: Session, updates: NotificationSettingsUpdate) -> NotificationSettings:
    settings = get_settings(db)
    for field, value in updates.model_dump(exclude_none=True).items():
        setattr(settings, field, value)
    db.commit()
    db.refresh(settings)
    return settings


def toggle_automatic_mode(db: Session, enabled: bool) -> NotificationSettings:
    return update_settings(db, NotificationSettingsUpdate(enable_automatic_mode=enabled))


def is_automatic_mode_enabled(db: Session) -> bool:
    return bool(get_settings(db).enable_automatic_mode)
