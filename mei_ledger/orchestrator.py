"""
Component wiring for MEI Ledger

This module ties the stores, the synchronization engine and the services
together for one client session.

DESIGN DECISION: The orchestrator decides the backends, nothing else
does:
- Google Sheets stores when configured, in-memory stores otherwise
- Cloudinary receipts when configured, in-memory receipts otherwise
- Every service shares one OwnerContext, one engine and one AuditLogger

Callers (a UI, a CLI, the tests) only ever talk to the services.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Optional

import structlog

from mei_ledger.audit import AuditLogger
from mei_ledger.config import get_settings
from mei_ledger.context import IdentityProvider, OwnerContext
from mei_ledger.ledger import LedgerService
from mei_ledger.models.ledger import utc_now
from mei_ledger.notifications import (
    JsonFileNotificationCache,
    NotificationCache,
    NotificationGenerator,
)
from mei_ledger.sales import SaleService
from mei_ledger.services.receipts import (
    CloudinaryReceiptStorage,
    InMemoryReceiptStorage,
    ReceiptStorageInterface,
)
from mei_ledger.services.storage import (
    AuditStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
    GoogleSheetsSaleStorage,
    GoogleSheetsTaxObligationStorage,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    InMemorySaleStorage,
    InMemoryTaxObligationStorage,
    LedgerStorageInterface,
    SaleStorageInterface,
    TaxObligationStorageInterface,
)
from mei_ledger.summary import SummaryCalculator
from mei_ledger.sync import SynchronizationEngine
from mei_ledger.tax import TaxObligationService


logger = structlog.get_logger("mei_ledger.orchestrator")


@dataclass
class Stores:
    """The record stores one session works against."""
    ledger: LedgerStorageInterface
    tax_obligations: TaxObligationStorageInterface
    sales: SaleStorageInterface
    audit: Optional[AuditStorageInterface] = None


@dataclass
class AppComponents:
    """Everything a client session needs."""
    context: OwnerContext
    stores: Stores
    engine: SynchronizationEngine
    ledger: LedgerService
    tax: TaxObligationService
    sales: SaleService
    summary: SummaryCalculator
    notifications: NotificationGenerator
    audit_logger: AuditLogger
    sheets_client: Optional[GoogleSheetsClient] = None


def create_memory_stores() -> Stores:
    return Stores(
        ledger=InMemoryLedgerStorage(),
        tax_obligations=InMemoryTaxObligationStorage(),
        sales=InMemorySaleStorage(),
        audit=InMemoryAuditStorage(),
    )


def create_sheets_stores(client: GoogleSheetsClient) -> Stores:
    return Stores(
        ledger=GoogleSheetsLedgerStorage(client),
        tax_obligations=GoogleSheetsTaxObligationStorage(client),
        sales=GoogleSheetsSaleStorage(client),
        audit=GoogleSheetsAuditStorage(client),
    )


def create_app_components(
    identity_provider: IdentityProvider,
    use_storage: bool = True,
    stores: Optional[Stores] = None,
    receipts: Optional[ReceiptStorageInterface] = None,
    notification_cache: Optional[NotificationCache] = None,
    today: Callable[[], date] = date.today,
    now: Callable[[], datetime] = utc_now,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        identity_provider: Source of the signed-in owner id
        use_storage: Whether to try the external backends (Google Sheets,
                    Cloudinary). Set to False for tests and local runs.
        stores: Explicit stores, overriding backend selection
        receipts: Explicit receipt storage
        notification_cache: Explicit cache (defaults to the JSON file
                    named in AppSettings)
        today: Clock for summaries and payment dates
        now: Clock for notifications
    """
    settings = get_settings()
    app_settings = settings.app

    sheets_client = None
    if stores is None:
        if use_storage:
            try:
                sheets_client = GoogleSheetsClient()
                stores = create_sheets_stores(sheets_client)
            except Exception as e:
                # Storage not configured - continue in memory
                logger.warning("storage_not_configured", error=str(e))
                sheets_client = None
                stores = create_memory_stores()
        else:
            stores = create_memory_stores()

    tax_folder = sale_folder = None
    if receipts is None:
        if use_storage:
            try:
                receipts = CloudinaryReceiptStorage()
                tax_folder = settings.cloudinary.tax_receipts_folder
                sale_folder = settings.cloudinary.sale_receipts_folder
            except Exception as e:
                logger.warning("receipts_not_configured", error=str(e))
                receipts = InMemoryReceiptStorage()
        else:
            receipts = InMemoryReceiptStorage()

    audit_logger = AuditLogger(stores.audit)
    context = OwnerContext(identity_provider)
    engine = SynchronizationEngine(
        stores.ledger,
        stores.tax_obligations,
        stores.sales,
        audit_logger=audit_logger,
        marker=app_settings.tax_marker,
        tax_payment_method=app_settings.tax_payment_method,
    )
    summary = SummaryCalculator(context, stores.ledger, clock=today)

    return AppComponents(
        context=context,
        stores=stores,
        engine=engine,
        ledger=LedgerService(context, stores.ledger, engine, receipts, audit_logger),
        tax=TaxObligationService(
            context,
            stores.tax_obligations,
            engine,
            settings=app_settings,
            summary=summary,
            receipts=receipts,
            audit_logger=audit_logger,
            clock=today,
            receipts_folder=tax_folder,
        ),
        sales=SaleService(
            context,
            stores.sales,
            engine,
            receipts=receipts,
            audit_logger=audit_logger,
            sales_category_id=app_settings.sales_category_id,
            receipts_folder=sale_folder,
        ),
        summary=summary,
        notifications=NotificationGenerator(
            context,
            stores.tax_obligations,
            notification_cache or JsonFileNotificationCache(app_settings.notification_cache_path),
            alert_window_days=app_settings.alert_window_days,
            high_priority_days=app_settings.high_priority_days,
            due_day=app_settings.tax_due_day,
            audit_logger=audit_logger,
            clock=now,
        ),
        audit_logger=audit_logger,
        sheets_client=sheets_client,
    )
