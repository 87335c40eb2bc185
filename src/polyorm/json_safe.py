import uuid
from datetime import date, datetime
from decimal import Decimal


def json_safe(obj):
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=str)
    if isinstance(obj, uuid.UUID):
        return str(obj)
    if hasattr(obj, "to_object"):
        return obj.to_object()
    return str(obj)
