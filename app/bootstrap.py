"""
Composition root.

Builds every component once and wires collaborators by injection. Nothing in
the pipeline reaches for a module-level singleton; tests build their own
pipeline with fakes for the three external collaborators.
"""

import importlib
from collections.abc import Callable
from dataclasses import dataclass

from app.config import settings
from app.features.alerts.jobs.alert_jobs import AlertDeliveryJob, AlertGenerationJob
from app.features.alerts.providers.base import LoggingNotificationProvider, NotificationProvider
from app.features.alerts.repository.alert_repository import InMemoryAlertRepository
from app.features.alerts.services.dispatcher import AlertDispatcher
from app.features.alerts.services.engine import AlertEngine
from app.features.extraction.providers.base import ClassificationProvider
from app.features.extraction.providers.openai_provider import OpenAIClassificationProvider
from app.features.extraction.services.engine import ClassificationEngine
from app.features.ingestion.domain.gateway import MessageGateway
from app.features.ingestion.jobs.scan_job import EmailScanJob
from app.features.ingestion.repository.metadata_repository import InMemoryEmailMetadataRepository
from app.features.ingestion.services.ledger import MetadataLedger
from app.features.ingestion.services.processor import EmailProcessor
from app.features.ingestion.services.scanner import IngestionScanner
from app.features.ingestion.services.scheduler import PriorityScheduler
from app.features.reconciliation.jobs.enrichment_job import VendorEnrichmentWorker
from app.features.reconciliation.jobs.maintenance_job import SubscriptionMaintenanceJob
from app.features.reconciliation.repository.subscription_repository import (
    InMemorySubscriptionRepository,
    InMemoryVendorRepository,
)
from app.features.reconciliation.services.enrichment import VendorEnrichmentQueue
from app.features.reconciliation.services.subscription_ledger import SubscriptionLedger
from app.features.reconciliation.services.vendor_directory import VendorDirectory
from app.infrastructure.observability.logging import get_logger
from app.infrastructure.security.credential_store import CredentialStore
from app.models.results import AccountErrors, OperationResult
from app.repositories.account_repository import (
    InMemoryEmailAccountRepository,
    InMemoryUserRepository,
)

logger = get_logger(__name__)


@dataclass
class Pipeline:
    accounts: InMemoryEmailAccountRepository
    users: InMemoryUserRepository
    credentials: CredentialStore
    ledger: MetadataLedger
    scheduler: PriorityScheduler
    scanner: IngestionScanner
    engine: ClassificationEngine
    vendor_queue: VendorEnrichmentQueue
    vendors: VendorDirectory
    subscriptions: SubscriptionLedger
    processor: EmailProcessor
    alerts: AlertEngine
    dispatcher: AlertDispatcher
    scan_job: EmailScanJob
    alert_generation_job: AlertGenerationJob
    alert_delivery_job: AlertDeliveryJob
    maintenance_job: SubscriptionMaintenanceJob
    enrichment_worker: VendorEnrichmentWorker

    async def disconnect_account(self, email_account_id: str) -> OperationResult[int]:
        """Deactivate a mailbox and archive the subscriptions it produced."""
        account = await self.accounts.get(email_account_id)
        if account is None:
            return OperationResult.failure(AccountErrors.NOT_FOUND)

        account.is_active = False
        account.sync_cursor = None
        await self.accounts.save(account)
        return await self.subscriptions.archive_by_email_account(email_account_id)


def build_pipeline(
    gateway: MessageGateway,
    provider: ClassificationProvider,
    notifier: NotificationProvider,
    credentials: CredentialStore,
    accounts: InMemoryEmailAccountRepository | None = None,
    users: InMemoryUserRepository | None = None,
) -> Pipeline:
    accounts = accounts or InMemoryEmailAccountRepository()
    users = users or InMemoryUserRepository()
    subscription_repo = InMemorySubscriptionRepository()
    alert_repo = InMemoryAlertRepository()

    ledger = MetadataLedger(InMemoryEmailMetadataRepository())
    scheduler = PriorityScheduler()
    scanner = IngestionScanner(accounts, gateway, credentials, ledger, scheduler)
    engine = ClassificationEngine(provider)

    vendor_queue = VendorEnrichmentQueue()
    vendors = VendorDirectory(InMemoryVendorRepository(), vendor_queue)
    subscriptions = SubscriptionLedger(subscription_repo, vendors)
    processor = EmailProcessor(ledger, scheduler, engine, subscriptions)

    alerts = AlertEngine(alert_repo, subscription_repo, users)
    dispatcher = AlertDispatcher(alerts, alert_repo, users, notifier)

    return Pipeline(
        accounts=accounts,
        users=users,
        credentials=credentials,
        ledger=ledger,
        scheduler=scheduler,
        scanner=scanner,
        engine=engine,
        vendor_queue=vendor_queue,
        vendors=vendors,
        subscriptions=subscriptions,
        processor=processor,
        alerts=alerts,
        dispatcher=dispatcher,
        scan_job=EmailScanJob(scanner, users),
        alert_generation_job=AlertGenerationJob(alerts, users),
        alert_delivery_job=AlertDeliveryJob(dispatcher),
        maintenance_job=SubscriptionMaintenanceJob(subscription_repo),
        enrichment_worker=VendorEnrichmentWorker(vendors, vendor_queue),
    )


def load_object(path: str) -> Callable:
    """Resolve a ``"package.module:attribute"`` path."""
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"Expected 'module:attribute', got '{path}'")
    return getattr(importlib.import_module(module_name), attribute)


def build_default_pipeline() -> Pipeline:
    """Pipeline for the worker process: OpenAI provider and log-only notifications."""
    if not settings.MESSAGE_GATEWAY_FACTORY:
        raise ValueError("MESSAGE_GATEWAY_FACTORY must name the mail provider gateway factory")

    gateway = load_object(settings.MESSAGE_GATEWAY_FACTORY)()
    logger.info("Building default pipeline", gateway=type(gateway).__name__)
    return build_pipeline(
        gateway=gateway,
        provider=OpenAIClassificationProvider(),
        notifier=LoggingNotificationProvider(),
        credentials=CredentialStore(),
    )
