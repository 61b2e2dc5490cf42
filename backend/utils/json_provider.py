# utils/json_provider.py
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from uuid import UUID
from flask.json.provider import DefaultJSONProvider


class CustomJSONProvider(DefaultJSONProvider):
    """
    Dates as YYYY-MM-DD, timestamps as ISO 8601, user/recording UUIDs as
    strings, dataclasses (metadata results, playback snapshots) as objects
    """
    def default(self, obj):
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, date):
            return obj.strftime('%Y-%m-%d')
        if isinstance(obj, UUID):
            return str(obj)
        if is_dataclass(obj) and not isinstance(obj, type):
            return asdict(obj)
        return super().default(obj)
