"""
Best-Effort Side Effects

After a primary write is committed, the follow-up updates (counters,
buyer insights, notifications) run one at a time, each inside its own
error boundary:

- success commits the effect
- failure rolls the session back, is logged and counted, and the next
  effect still runs

Callers never see these failures. Effects must re-read what they touch
by id, because a rollback expires every instance in the session.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List

import structlog
from prometheus_client import Counter
from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger(__name__)


# =============================================================================
# METRICS
# =============================================================================

SIDE_EFFECTS = Counter(
    "marketplace_side_effects_total",
    "Follow-up writes executed after a primary write",
    ["operation", "effect", "status"],
)


@dataclass
class FanOutReport:
    """Outcome of a batch of side effects"""
    operation: str
    succeeded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class SideEffectRunner:
    """
    Runs follow-up writes on a session, isolating their failures.

    Example:
        runner = SideEffectRunner(db, "place_order", order_id=str(order.id))
        await runner.run("shop_stats", lambda: bump_shop(shop_id))
    """

    def __init__(self, session: AsyncSession, operation: str, **context: Any):
        self.session = session
        self.report = FanOutReport(operation=operation)
        self._context: Dict[str, Any] = context

    async def run(self, effect: str, action: Callable[[], Awaitable[Any]]) -> bool:
        try:
            await action()
            await self.session.commit()
        except Exception as e:
            await self.session.rollback()
            SIDE_EFFECTS.labels(operation=self.report.operation, effect=effect, status="failed").inc()
            self.report.failed.append(effect)
            logger.error(
                "Side effect failed",
                operation=self.report.operation,
                effect=effect,
                error=str(e),
                error_type=type(e).__name__,
                **self._context,
            )
            return False

        SIDE_EFFECTS.labels(operation=self.report.operation, effect=effect, status="ok").inc()
        self.report.succeeded.append(effect)
        return True

    def finish(self) -> FanOutReport:
        if self.report.failed:
            logger.warning(
                "Side effects incomplete",
                operation=self.report.operation,
                failed=self.report.failed,
                succeeded=len(self.report.succeeded),
                **self._context,
            )
        else:
            logger.debug(
                "Side effects complete",
                operation=self.report.operation,
                succeeded=len(self.report.succeeded),
                **self._context,
            )
        return self.report
