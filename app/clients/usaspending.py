"""USASpending.gov client for federal robotics contract awards."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any

import httpx

from app.clients.upstream import UpstreamClient
from app.config import settings
from app.services.errors import UpstreamSchemaError

ROBOTICS_KEYWORDS: tuple[str, ...] = (
    "robotics",
    "robot",
    "autonomous",
    "unmanned",
    "humanoid",
    "exoskeleton",
)

_AWARD_FIELDS = [
    "Award ID",
    "Recipient Name",
    "Award Amount",
    "Description",
    "Start Date",
    "Awarding Agency",
]


@dataclass(frozen=True)
class ContractAward:
    award_id: str
    recipient_name: str
    amount: float
    description: str
    award_date: date | None
    agency: str


class USASpendingClient:
    """Searches contract awards (types A-D) matching robotics keywords."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._upstream = UpstreamClient(
            base_url or settings.usaspending_api_base_url,
            name="usaspending",
            http_client=http_client,
        )

    async def aclose(self) -> None:
        await self._upstream.aclose()

    async def search_robotics_contracts(
        self,
        *,
        min_amount: float = 100_000,
        days: int = 30,
        limit: int = 50,
        today: date | None = None,
    ) -> list[ContractAward]:
        end = today or datetime.now(timezone.utc).date()
        start = end - timedelta(days=days)
        body = {
            "filters": {
                "award_type_codes": ["A", "B", "C", "D"],
                "keywords": list(ROBOTICS_KEYWORDS),
                "award_amounts": [{"lower_bound": min_amount}],
                "time_period": [{"start_date": start.isoformat(), "end_date": end.isoformat()}],
            },
            "fields": _AWARD_FIELDS,
            "page": 1,
            "limit": limit,
            "sort": "Award Amount",
            "order": "desc",
        }
        payload = await self._upstream.post_json("/search/spending_by_award/", json=body)
        results = payload.get("results") if isinstance(payload, dict) else None
        if not isinstance(results, list):
            raise UpstreamSchemaError("`results` missing from USASpending response.")
        return [_to_award(row) for row in results if isinstance(row, dict)]


def _to_award(row: dict[str, Any]) -> ContractAward:
    start_raw = row.get("Start Date")
    return ContractAward(
        award_id=str(row.get("Award ID") or row.get("generated_internal_id") or ""),
        recipient_name=row.get("Recipient Name") or "Unknown",
        amount=float(row.get("Award Amount") or 0.0),
        description=row.get("Description") or "",
        award_date=date.fromisoformat(start_raw[:10]) if start_raw else None,
        agency=row.get("Awarding Agency") or "",
    )
