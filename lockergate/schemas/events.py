from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class EventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    category: str
    name: str
    level: str
    device_id: Optional[str] = None
    fields: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
