from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class PageMeta:
    page_type: str
    funnel_stage: str


@dataclass(frozen=True)
class SessionContext:
    """
    Visitor/session/page context, derived once per page load.
    Only the wire fields (see as_params) are sent to the resolution service.
    """

    device_type: str
    visitor_type: str
    bucket: str
    traffic_source: str
    time_bucket: str
    page_path: str

    session_id: str = ""
    visitor_id: str = ""

    def as_params(self) -> dict[str, Any]:
        return {
            "device_type": self.device_type,
            "visitor_type": self.visitor_type,
            "bucket": self.bucket,
            "traffic_source": self.traffic_source,
            "time_bucket": self.time_bucket,
            "page_path": self.page_path,
        }
