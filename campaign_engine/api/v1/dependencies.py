"""
API Dependencies
Supabase access and service wiring for the endpoints
"""
import os

from fastapi import Depends
from supabase import create_client, Client
from dotenv import load_dotenv

from campaign_engine.core.config import ConfigManager, Settings, get_settings
from campaign_engine.domain.services.billing_service import BillingService
from campaign_engine.domain.services.notification_service import NotificationService
from campaign_engine.domain.services.outcome_classifier import OutcomeClassifier
from campaign_engine.domain.services.webhook_ingestion import WebhookIngestionService
from campaign_engine.infrastructure.storage.call_repository import CallRepository
from campaign_engine.infrastructure.storage.campaign_repository import CampaignRepository
from campaign_engine.infrastructure.storage.organization_repository import OrganizationRepository

load_dotenv()


def get_supabase() -> Client:
    """
    Get Supabase client with validation.

    Raises:
        RuntimeError: If Supabase URL or SERVICE_KEY is not configured
    """
    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SUPABASE_SERVICE_KEY")

    if not url:
        raise RuntimeError(
            "SUPABASE_URL is not configured. "
            "Set SUPABASE_URL environment variable."
        )
    if not key:
        raise RuntimeError(
            "SUPABASE_SERVICE_KEY is not configured. "
            "Set SUPABASE_SERVICE_KEY environment variable."
        )

    return create_client(url, key)


def get_config() -> ConfigManager:
    return ConfigManager()


def get_webhook_service(
    supabase: Client = Depends(get_supabase),
    settings: Settings = Depends(get_settings),
    config: ConfigManager = Depends(get_config)
) -> WebhookIngestionService:
    calls = CallRepository(supabase)
    organizations = OrganizationRepository(supabase)

    return WebhookIngestionService(
        calls=calls,
        campaigns=CampaignRepository(supabase),
        billing=BillingService(organizations, config),
        outcome_classifier=OutcomeClassifier(calls),
        notifications=NotificationService(organizations, settings, config),
        settings=settings,
    )
