"""Per-delivery click and lift report for an owner."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from shared.repositories.delivery import DeliveryRepository

from .sampling import SamplingService


class ReportService:
    def __init__(self, deliveries: DeliveryRepository, sampling: SamplingService) -> None:
        self.deliveries = deliveries
        self.sampling = sampling

    async def build(self, owner_id: str, days: int = 30, now: datetime | None = None) -> dict:
        now = now or datetime.now(timezone.utc)
        rows = await self.deliveries.list_with_clicks(owner_id, now - timedelta(days=days))

        items = []
        for row in rows:
            lift = session = None
            if row["stream_id"] is not None:
                lift = await self.sampling.compute_windowed_lift(row["stream_id"], row["created_at"])
                session = await self.sampling.compute_lift(row["stream_id"], row["created_at"])
            clicks = int(row["clicks"])
            lift_value = lift.lift if lift else 0
            items.append(
                {
                    "delivery_id": row["id"],
                    "draft_id": row["draft_id"],
                    "stream_id": row["stream_id"],
                    "channel": row["channel"],
                    "template_id": row["template_id"],
                    "body_text": row["body_text"],
                    "created_at": row["created_at"].isoformat(),
                    "clicks": clicks,
                    "lift": lift_value,
                    "lift_percent": lift.lift_percent if lift else 0.0,
                    "baseline": lift.baseline if lift else None,
                    "session_lift": session.lift if session else None,
                    "conversion": round(lift_value / clicks, 2) if clicks else 0.0,
                }
            )

        best = max(items, key=lambda i: i["lift"], default=None)
        return {
            "days": days,
            "totals": {
                "deliveries": len(items),
                "clicks": sum(i["clicks"] for i in items),
                "lift": sum(i["lift"] for i in items),
            },
            "best_delivery_id": best["delivery_id"] if best and best["lift"] > 0 else None,
            "deliveries": items,
        }
