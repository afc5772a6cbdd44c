"""
Customer, mandate and subscription stages.

Each stage plugs Mollie lookup and create calls into ReconcileStage. The
customer stage works on DonorRecords; the mandate and subscription stages
work on CustomerLinks, because both need the Mollie customer id produced by
the customer stage.
"""

from abc import abstractmethod
from typing import Dict, List, Mapping, NamedTuple

import structlog

from .client import MollieAPIError
from .matching import AmbiguousMatchError, matches, select_one
from .models import (
    Amount,
    DonorRecord,
    RemoteCustomer,
    RemoteMandate,
    RemoteSubscription,
    display_name,
)
from .stage import ReconcileStage, ReconciliationMap

logger = structlog.get_logger(__name__)


class CustomerLink(NamedTuple):
    """A donor together with the Mollie customer that represents it."""
    record: DonorRecord
    customer: RemoteCustomer


def links(customers: Mapping[DonorRecord, RemoteCustomer]) -> List[CustomerLink]:
    """Turn a donor → customer map into stage inputs for the later stages."""
    return [CustomerLink(record, customer) for record, customer in customers.items()]


class CustomerStage(ReconcileStage[DonorRecord, RemoteCustomer]):
    """
    One Mollie customer per donor.

    Existing customers come from a single list call limited to
    customer_page_size; customers beyond that first page are not seen.
    """

    kind = "customer"

    async def _find_existing(self, inputs: List[DonorRecord]) -> ReconciliationMap:
        remote = await self.client.list_customers(limit=self.config.customer_page_size)

        candidates: Dict[DonorRecord, List[RemoteCustomer]] = {}
        for item in remote:
            for record in inputs:
                if matches(record, item):
                    candidates.setdefault(record, []).append(item)

        found = ReconciliationMap(self.kind)
        for record, customers in candidates.items():
            try:
                found.add(record, select_one(customers, self.config.selection_policy))
            except AmbiguousMatchError as e:
                logger.warning(
                    "ambiguous customer match",
                    donor=record.describe(),
                    error=str(e),
                )
                self.unresolved.add(record)
        return found

    async def _create(self, item: DonorRecord) -> RemoteCustomer:
        return await self.client.create_customer(name=display_name(item), email=item.email)


class _PerCustomerStage(ReconcileStage[CustomerLink, object]):
    """Lookup by listing the resource per customer; a failed list skips that customer."""

    @abstractmethod
    async def _list(self, customer_id: str) -> list:
        ...

    def key(self, item: CustomerLink) -> DonorRecord:
        return item.record

    async def _find_existing(self, inputs: List[CustomerLink]) -> ReconciliationMap:
        found = ReconciliationMap(self.kind)

        for link in inputs:
            try:
                items = await self._list(link.customer.id)
                chosen = select_one(items, self.config.selection_policy)
            except MollieAPIError as e:
                logger.error(
                    f"failed {self.kind} retrieval",
                    donor=link.record.describe(),
                    email=link.record.email,
                    customer_id=link.customer.id,
                    error=str(e),
                )
                continue
            except AmbiguousMatchError as e:
                logger.warning(
                    f"ambiguous {self.kind} match",
                    donor=link.record.describe(),
                    customer_id=link.customer.id,
                    error=str(e),
                )
                self.unresolved.add(link.record)
                continue

            if chosen is not None:
                found.add(link.record, chosen)

        return found


class MandateStage(_PerCustomerStage):
    """One SEPA direct-debit mandate per customer."""

    kind = "mandate"

    async def _list(self, customer_id: str) -> List[RemoteMandate]:
        return await self.client.list_mandates(customer_id)

    async def _create(self, item: CustomerLink) -> RemoteMandate:
        # The account holder name is the Mollie customer's name, not the roster's
        return await self.client.create_mandate(
            item.customer.id,
            consumer_name=item.customer.name or "",
            consumer_account=item.record.iban,
            signature_date=item.record.authorized_since,
        )


class SubscriptionStage(_PerCustomerStage):
    """One monthly subscription per customer."""

    kind = "subscription"

    async def _list(self, customer_id: str) -> List[RemoteSubscription]:
        return await self.client.list_subscriptions(customer_id)

    async def _create(self, item: CustomerLink) -> RemoteSubscription:
        return await self.client.create_subscription(
            item.customer.id,
            amount=Amount.eur(item.record.donation_amount),
            interval=self.config.subscription_interval,
            description=self.config.subscription_description,
            webhook_url=self.config.webhook_url,
        )
