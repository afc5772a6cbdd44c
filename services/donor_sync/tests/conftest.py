"""
Shared fixtures for donor sync tests.

FakeMollie keeps customers, mandates and subscriptions in memory and exposes
the same async methods as MollieClient, so stages and the pipeline can be
exercised without HTTP.
"""

import itertools
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from services.donor_sync.client import MollieAPIError
from services.donor_sync.models import (
    DonorRecord,
    RemoteCustomer,
    RemoteMandate,
    RemoteSubscription,
)


class FakeMollie:
    """
    In-memory stand-in for MollieClient.

    Failures are injected per method through `fail`: map a method name to
    True (always fail) or to a set of keys (customer name for
    create_customer, customer id for the per-customer calls).
    """

    def __init__(self):
        self.customers = []
        self.mandates = {}
        self.subscriptions = {}
        self.calls = []
        self.fail = {}
        self._ids = itertools.count(1)
        self._clock = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def _check(self, method, key=None):
        rule = self.fail.get(method)
        if rule is True or (rule and key in rule):
            raise MollieAPIError(f"{method} failed for {key}", status_code=422)

    def _next_id(self, prefix):
        return f"{prefix}_{next(self._ids)}"

    def _now(self):
        self._clock += timedelta(minutes=1)
        return self._clock

    def add_customer(self, name, email=None, created_at=None):
        customer = RemoteCustomer(
            id=self._next_id("cst"),
            name=name,
            email=email,
            created_at=created_at or self._now(),
        )
        self.customers.append(customer)
        return customer

    def add_mandate(self, customer_id, status="valid", created_at=None):
        mandate = RemoteMandate(
            id=self._next_id("mdt"),
            customer_id=customer_id,
            status=status,
            method="directdebit",
            created_at=created_at or self._now(),
        )
        self.mandates.setdefault(customer_id, []).append(mandate)
        return mandate

    def add_subscription(self, customer_id, created_at=None):
        subscription = RemoteSubscription(
            id=self._next_id("sub"),
            customer_id=customer_id,
            interval="1 month",
            status="active",
            created_at=created_at or self._now(),
        )
        self.subscriptions.setdefault(customer_id, []).append(subscription)
        return subscription

    def created(self, method):
        return [args for name, args in self.calls if name == method]

    async def list_customers(self, limit=250):
        self.calls.append(("list_customers", {"limit": limit}))
        self._check("list_customers")
        return list(self.customers[:limit])

    async def create_customer(self, name, email=None):
        self.calls.append(("create_customer", {"name": name, "email": email}))
        self._check("create_customer", name)
        return self.add_customer(name, email)

    async def delete_customer(self, customer_id):
        self.calls.append(("delete_customer", {"customer_id": customer_id}))
        self._check("delete_customer", customer_id)
        self.customers = [c for c in self.customers if c.id != customer_id]

    async def list_mandates(self, customer_id):
        self.calls.append(("list_mandates", {"customer_id": customer_id}))
        self._check("list_mandates", customer_id)
        return list(self.mandates.get(customer_id, []))

    async def create_mandate(
        self, customer_id, consumer_name, consumer_account, signature_date=None, method="directdebit"
    ):
        self.calls.append(("create_mandate", {
            "customer_id": customer_id,
            "consumer_name": consumer_name,
            "consumer_account": consumer_account,
            "signature_date": signature_date,
        }))
        self._check("create_mandate", customer_id)
        mandate = RemoteMandate(
            id=self._next_id("mdt"),
            customer_id=customer_id,
            status="valid",
            method=method,
            signature_date=signature_date,
            created_at=self._now(),
        )
        self.mandates.setdefault(customer_id, []).append(mandate)
        return mandate

    async def list_subscriptions(self, customer_id):
        self.calls.append(("list_subscriptions", {"customer_id": customer_id}))
        self._check("list_subscriptions", customer_id)
        return list(self.subscriptions.get(customer_id, []))

    async def create_subscription(self, customer_id, amount, interval, description="", webhook_url=""):
        self.calls.append(("create_subscription", {
            "customer_id": customer_id,
            "amount": amount,
            "interval": interval,
            "description": description,
            "webhook_url": webhook_url,
        }))
        self._check("create_subscription", customer_id)
        subscription = RemoteSubscription(
            id=self._next_id("sub"),
            customer_id=customer_id,
            amount=amount,
            interval=interval,
            description=description,
            webhook_url=webhook_url,
            status="active",
            created_at=self._now(),
        )
        self.subscriptions.setdefault(customer_id, []).append(subscription)
        return subscription


@pytest.fixture
def fake_mollie():
    return FakeMollie()


@pytest.fixture
def jan():
    return DonorRecord(
        first_name="Jan",
        last_name="Jansen",
        email="jan@x.nl",
        iban="NL00BANK1234",
        donation_amount=Decimal("10"),
    )


@pytest.fixture
def piet():
    return DonorRecord(
        first_name="Piet",
        middle_insert="de",
        last_name="Vries",
        email="piet@x.nl",
        iban="NL11BANK5678",
        donation_amount=Decimal("7.5"),
    )


@pytest.fixture
def klaas():
    return DonorRecord(
        first_name="Klaas",
        last_name="Bakker",
        email=None,
        iban="NL22BANK9012",
        donation_amount=Decimal("25"),
    )


@pytest.fixture
def donors(jan, piet, klaas):
    return [jan, piet, klaas]
