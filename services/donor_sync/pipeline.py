"""
Pipeline for the donor sync.

Coordinates the complete flow:
1. Load the donor roster (fetcher + parser)
2. Customers: find existing, create missing, merge
3. Mandates for every known customer
4. Subscriptions for every known customer
5. Report counts per stage

Stages run strictly one after another; each later stage needs the full
donor → customer map produced by the customer stage.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog

from .client import MollieClient
from .fetcher import fetch
from .models import DonorRecord
from .parser import deduplicate, parse_all_donors
from .stage import ReconciliationMap, StageConfig, StageOutcome
from .stages import CustomerStage, MandateStage, SubscriptionStage, links

logger = structlog.get_logger(__name__)


@dataclass
class StageReport:
    """Counts for one stage."""
    retrieved: int = 0
    created: int = 0
    failed: int = 0
    unresolved: int = 0

    @classmethod
    def from_outcome(cls, outcome: StageOutcome) -> "StageReport":
        return cls(
            retrieved=len(outcome.found),
            created=len(outcome.created),
            failed=len(outcome.failures),
            unresolved=len(outcome.unresolved),
        )

    def to_dict(self) -> Dict[str, int]:
        return {
            "retrieved": self.retrieved,
            "created": self.created,
            "failed": self.failed,
            "unresolved": self.unresolved,
        }


@dataclass
class PipelineReport:
    """
    Result of one run with per-stage metrics.

    The maps are kept for callers that want to inspect what was matched.
    """
    records_parsed: int = 0
    parse_errors: int = 0
    duplicates_skipped: int = 0

    customers: StageReport = field(default_factory=StageReport)
    mandates: StageReport = field(default_factory=StageReport)
    subscriptions: StageReport = field(default_factory=StageReport)

    all_customers: ReconciliationMap = field(
        default_factory=lambda: ReconciliationMap("customer")
    )
    all_mandates: ReconciliationMap = field(
        default_factory=lambda: ReconciliationMap("mandate")
    )
    all_subscriptions: ReconciliationMap = field(
        default_factory=lambda: ReconciliationMap("subscription")
    )

    @property
    def failed(self) -> int:
        return self.customers.failed + self.mandates.failed + self.subscriptions.failed

    @property
    def success(self) -> bool:
        return self.failed == 0 and self.parse_errors == 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "records_parsed": self.records_parsed,
            "parse_errors": self.parse_errors,
            "duplicates_skipped": self.duplicates_skipped,
            "customers": self.customers.to_dict(),
            "mandates": self.mandates.to_dict(),
            "subscriptions": self.subscriptions.to_dict(),
        }


def _log_stage(kind: str, report: StageReport) -> None:
    logger.info(
        f"{kind} reconciled",
        stage=kind,
        retrieved=report.retrieved,
        created=report.created,
        failed=report.failed,
        unresolved=report.unresolved,
    )


class DonorSyncPipeline:
    """
    Runs the customer, mandate and subscription stages in order.

    Args:
        client: Mollie client (or anything with the same methods)
        config: Options shared by all stages
    """

    def __init__(self, client, config: Optional[StageConfig] = None):
        self.config = config or StageConfig()
        self.customer_stage = CustomerStage(client, self.config)
        self.mandate_stage = MandateStage(client, self.config)
        self.subscription_stage = SubscriptionStage(client, self.config)

    async def run(self, records: List[DonorRecord], parse_errors: int = 0) -> PipelineReport:
        """
        Reconcile the given donors against Mollie.

        Raises:
            DuplicateKeyError: If found and created customers overlap
        """
        donors = deduplicate(records)
        report = PipelineReport(
            records_parsed=len(records),
            parse_errors=parse_errors,
            duplicates_skipped=len(records) - len(donors),
        )
        logger.info("Donor records parsed", count=len(records))

        # Customers
        customers = await self.customer_stage.reconcile(donors)
        report.all_customers = customers.combined
        report.customers = StageReport.from_outcome(customers)
        _log_stage("customers", report.customers)

        # Mandates
        mandates = await self.mandate_stage.reconcile(links(report.all_customers))
        report.all_mandates = mandates.combined
        report.mandates = StageReport.from_outcome(mandates)
        _log_stage("mandates", report.mandates)

        # Subscriptions
        subscriptions = await self.subscription_stage.reconcile(links(report.all_customers))
        report.all_subscriptions = subscriptions.combined
        report.subscriptions = StageReport.from_outcome(subscriptions)
        _log_stage("subscriptions", report.subscriptions)

        logger.info("Donor sync finished", **report.to_dict())
        return report


async def run_donor_sync(config, client: Optional[MollieClient] = None) -> PipelineReport:
    """
    Execute the complete donor sync.

    Args:
        config: DonorSyncSettings
        client: Optional client; one is built from config when omitted

    Returns:
        PipelineReport with per-stage counts

    Raises:
        FileNotFoundError / FetchError: If the roster cannot be read
        DuplicateKeyError: On a merge-key collision
    """
    raw_records = fetch(config.csv_path, delimiter=config.csv_delimiter, encoding=config.csv_encoding)
    donors, errors = parse_all_donors(raw_records, skip_errors=True)

    pipeline_config = StageConfig.from_settings(config)

    if client is not None:
        return await DonorSyncPipeline(client, pipeline_config).run(donors, parse_errors=len(errors))

    async with MollieClient.from_settings(config) as mollie:
        return await DonorSyncPipeline(mollie, pipeline_config).run(donors, parse_errors=len(errors))
