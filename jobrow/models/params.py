from dataclasses import dataclass
from datetime import datetime


@dataclass
class PushParams:
    queue: str
    serialized_payload: str
    available_at: datetime
    created_at: datetime


@dataclass
class PopParams:
    queue: str
    now: datetime
