"""Dependency injection singletons for mentor-meter."""

from mentor_meter.common.config import get_settings
from mentor_meter.common.database import DatabaseManager
from mentor_meter.conversations.service import ConversationService
from mentor_meter.entitlements.service import EntitlementService
from mentor_meter.notifications.broadcaster import Broadcaster
from mentor_meter.subscriptions.service import SubscriptionService
from mentor_meter.usage.service import UsageLedger
from mentor_meter.webhooks.service import IngestionService

_db: DatabaseManager | None = None
_subscriptions: SubscriptionService | None = None
_ledger: UsageLedger | None = None
_conversations: ConversationService | None = None
_entitlements: EntitlementService | None = None
_ingestion: IngestionService | None = None
_broadcaster: Broadcaster | None = None


def get_db() -> DatabaseManager:
    global _db
    if _db is None:
        _db = DatabaseManager(get_settings())
    return _db


def get_subscription_service() -> SubscriptionService:
    global _subscriptions
    if _subscriptions is None:
        _subscriptions = SubscriptionService(get_settings())
    return _subscriptions


def get_usage_ledger() -> UsageLedger:
    global _ledger
    if _ledger is None:
        _ledger = UsageLedger(get_settings(), get_subscription_service())
    return _ledger


def get_conversation_service() -> ConversationService:
    global _conversations
    if _conversations is None:
        _conversations = ConversationService()
    return _conversations


def get_entitlement_service() -> EntitlementService:
    global _entitlements
    if _entitlements is None:
        _entitlements = EntitlementService(
            get_settings(), get_subscription_service(), get_usage_ledger(),
        )
    return _entitlements


def get_ingestion_service() -> IngestionService:
    global _ingestion
    if _ingestion is None:
        _ingestion = IngestionService(
            get_settings(), get_usage_ledger(), get_conversation_service(),
        )
    return _ingestion


def get_broadcaster() -> Broadcaster:
    global _broadcaster
    if _broadcaster is None:
        _broadcaster = Broadcaster(get_settings())
    return _broadcaster


def reset_singletons() -> None:
    """Reset all singletons (for testing)."""
    global _db, _subscriptions, _ledger, _conversations, _entitlements, _ingestion, _broadcaster
    _db = None
    _subscriptions = None
    _ledger = None
    _conversations = None
    _entitlements = None
    _ingestion = None
    _broadcaster = None
