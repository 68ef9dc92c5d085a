from datetime import timezone
from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator
from inbola_auth.common.utils import now


class UTCDateTime(TypeDecorator):
    """Timezone aware UTC datetimes on every backend.

    SQLite drops tzinfo on the way in and hands back naive values, Postgres keeps it.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


