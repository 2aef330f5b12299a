"""
Workers Package
Background worker for campaign scheduling
"""
from campaign_engine.workers.campaign_worker import CampaignWorker

__all__ = [
    "CampaignWorker"
]
