"""
Maintenance helpers, run separately from the reconciliation pipeline.

Used to clean up after a bad import: list the customers created since a given
moment and delete them. Mandates and subscriptions of a deleted customer are
removed by Mollie along with it.
"""

from datetime import date, datetime, time, timezone
from typing import Iterable, List, Union

import structlog

from .client import MollieAPIError
from .models import RemoteCustomer

logger = structlog.get_logger(__name__)


def _as_utc(moment: Union[date, datetime]) -> datetime:
    if not isinstance(moment, datetime):
        moment = datetime.combine(moment, time.min)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


async def find_customers_created_since(
    client,
    since: Union[date, datetime],
    page_size: int = 250,
) -> List[RemoteCustomer]:
    """
    List customers created at or after `since`.

    Only the first page of customers is inspected. A failed list call is
    logged and yields an empty list.
    """
    threshold = _as_utc(since)

    try:
        customers = await client.list_customers(limit=page_size)
    except MollieAPIError as e:
        logger.error("failed customer retrieval", error=str(e))
        return []

    return [
        customer for customer in customers
        if customer.created_at is not None and _as_utc(customer.created_at) >= threshold
    ]


async def delete_customers(client, customers: Iterable[RemoteCustomer]) -> List[RemoteCustomer]:
    """
    Delete customers one by one.

    Returns:
        The customers that were deleted; failures are logged and skipped
    """
    deleted: List[RemoteCustomer] = []

    for customer in customers:
        try:
            await client.delete_customer(customer.id)
        except MollieAPIError as e:
            logger.error(
                "failed customer deletion",
                customer_id=customer.id,
                email=customer.email,
                error=str(e),
            )
            continue
        deleted.append(customer)

    logger.info("Customers deleted", deleted=len(deleted))
    return deleted
