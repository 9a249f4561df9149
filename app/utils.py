from datetime import datetime, date, time, timedelta
from decimal import Decimal
from uuid import UUID
from typing import Any

def make_json_serializable(data: Any) -> Any:
    """
    Recursively convert values returned by report queries (UUID, Decimal,
    dates, intervals) into JSON-serializable values.
    """
    if isinstance(data, dict):
        return {str(k): make_json_serializable(v) for k, v in data.items()}
    elif isinstance(data, (list, tuple)):
        return [make_json_serializable(v) for v in data]
    elif isinstance(data, UUID):
        return str(data)
    elif isinstance(data, Decimal):
        return float(data)
    elif isinstance(data, (datetime, date, time)):
        return data.isoformat()
    elif isinstance(data, timedelta):
        return data.total_seconds()
    elif isinstance(data, (bytes, memoryview)):
        return bytes(data).hex()
    return data
