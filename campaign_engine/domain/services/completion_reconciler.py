"""
Completion Reconciler
Marks running campaigns completed once none of their items are open.
"""
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from campaign_engine.domain.models.campaign import Campaign, CampaignCompletion, ResultsSummary
from campaign_engine.domain.models.campaign_item import OPEN_STATUSES, ItemStatus
from campaign_engine.utils.tasks import fire_and_forget

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CompletionReconciler:
    """
    Rolls item state up into campaign state.

    Only campaigns still in 'running' are considered and the close is a
    conditional update, so repeated or concurrent runs complete each
    campaign exactly once.
    """

    def __init__(self, campaigns, notifications=None, clock: Callable[[], datetime] = _utcnow):
        self.campaigns = campaigns
        self.notifications = notifications
        self._clock = clock

    async def run(self) -> List[CampaignCompletion]:
        campaigns = await self.campaigns.list_running_campaigns()
        completions = []

        for campaign in campaigns:
            try:
                completion = await self.reconcile_campaign(campaign)
            except Exception as e:
                logger.error(f"Failed to reconcile campaign {campaign.id}: {e}", exc_info=True)
                continue
            if completion:
                completions.append(completion)

        return completions

    async def reconcile_campaign(self, campaign: Campaign) -> Optional[CampaignCompletion]:
        open_items = await self.campaigns.count_items(campaign.id, OPEN_STATUSES)
        if open_items > 0:
            return None

        summary = ResultsSummary(
            total=await self.campaigns.count_items(campaign.id),
            completed=await self.campaigns.count_items(campaign.id, [ItemStatus.COMPLETED.value]),
            failed=await self.campaigns.count_items(campaign.id, [ItemStatus.FAILED.value]),
        )
        completed_at = self._clock()

        if not await self.campaigns.complete_campaign(campaign.id, summary, completed_at):
            logger.debug(f"Campaign {campaign.id} already closed by another worker")
            return None

        logger.info(
            f"Campaign {campaign.id} completed: total={summary.total}, "
            f"completed={summary.completed}, failed={summary.failed}"
        )

        completion = CampaignCompletion(
            campaign_id=campaign.id,
            organization_id=campaign.organization_id,
            name=campaign.name,
            summary=summary,
            completed_at=completed_at,
        )

        if self.notifications is not None:
            fire_and_forget(
                self.notifications.notify_campaign_completed(completion),
                name="campaign_completed_notification",
            )

        return completion
