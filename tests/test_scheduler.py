from __future__ import annotations

import asyncio

from coretemp.transports.scheduler import AsyncioScheduler


def test_timers_fire_in_order_and_can_be_cancelled() -> None:
    fired: list[str] = []

    async def _main() -> None:
        scheduler = AsyncioScheduler()
        scheduler.call_later(0.02, lambda: fired.append("late"))
        scheduler.call_later(0.01, lambda: fired.append("early"))
        scheduler.call_later(0.01, lambda: fired.append("cancelled")).cancel()
        await asyncio.sleep(0.05)

    asyncio.run(_main())
    assert fired == ["early", "late"]
