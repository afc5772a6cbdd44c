"""Tests for donor/customer matching and selection policies."""

from datetime import datetime, timezone

import pytest

from services.donor_sync.matching import (
    AmbiguousMatchError,
    SelectionPolicy,
    matches,
    select_one,
)
from services.donor_sync.models import DonorRecord, RemoteCustomer, RemoteMandate


def _donor(first="Jan", last="Jansen", email="jan@x.nl"):
    return DonorRecord(first_name=first, last_name=last, email=email, iban="NL00BANK1234")


class TestMatches:
    """Strict equality on (display name, email)."""

    def test_exact_match(self):
        assert matches(_donor(), RemoteCustomer(id="cst_1", name="Jan Jansen", email="jan@x.nl"))

    def test_both_emails_empty(self):
        assert matches(_donor(email=None), RemoteCustomer(id="cst_1", name="Jan Jansen", email=None))
        assert matches(_donor(email=None), RemoteCustomer(id="cst_1", name="Jan Jansen", email=""))
        assert matches(_donor(email=""), RemoteCustomer(id="cst_1", name="Jan Jansen"))

    def test_email_mismatch(self):
        assert not matches(_donor(), RemoteCustomer(id="cst_1", name="Jan Jansen", email="other@x.nl"))

    def test_missing_remote_email_does_not_match_present_local(self):
        assert not matches(_donor(), RemoteCustomer(id="cst_1", name="Jan Jansen", email=None))

    def test_name_mismatch(self):
        assert not matches(_donor(), RemoteCustomer(id="cst_1", name="Jan Janssen", email="jan@x.nl"))

    def test_case_sensitive(self):
        assert not matches(_donor(), RemoteCustomer(id="cst_1", name="jan jansen", email="jan@x.nl"))
        assert not matches(_donor(), RemoteCustomer(id="cst_1", name="Jan Jansen", email="JAN@x.nl"))

    def test_no_whitespace_normalization(self):
        assert not matches(_donor(), RemoteCustomer(id="cst_1", name="Jan  Jansen", email="jan@x.nl"))
        assert not matches(_donor(), RemoteCustomer(id="cst_1", name="Jan Jansen ", email="jan@x.nl"))

    def test_single_name_part(self):
        assert matches(_donor(last=""), RemoteCustomer(id="cst_1", name="Jan", email="jan@x.nl"))

    def test_remote_without_name(self):
        assert not matches(_donor(), RemoteCustomer(id="cst_1", name=None, email="jan@x.nl"))


def _mandate(mandate_id, created_at):
    return RemoteMandate(id=mandate_id, customer_id="cst_1", created_at=created_at)


class TestSelectOne:
    """Tests for picking one item out of several."""

    def test_empty(self):
        for policy in SelectionPolicy:
            assert select_one([], policy) is None

    def test_first_is_default(self):
        items = [_mandate("mdt_1", None), _mandate("mdt_2", None)]
        assert select_one(items).id == "mdt_1"

    def test_most_recent(self):
        items = [
            _mandate("mdt_old", datetime(2023, 1, 1, tzinfo=timezone.utc)),
            _mandate("mdt_new", datetime(2024, 1, 1, tzinfo=timezone.utc)),
            _mandate("mdt_none", None),
        ]
        assert select_one(items, SelectionPolicy.MOST_RECENT).id == "mdt_new"

    def test_most_recent_tie_keeps_list_order(self):
        moment = datetime(2024, 1, 1, tzinfo=timezone.utc)
        items = [_mandate("mdt_a", moment), _mandate("mdt_b", moment)]
        assert select_one(items, SelectionPolicy.MOST_RECENT).id == "mdt_a"

    def test_require_unique_single(self):
        assert select_one([_mandate("mdt_1", None)], SelectionPolicy.REQUIRE_UNIQUE).id == "mdt_1"

    def test_require_unique_ambiguous(self):
        items = [_mandate("mdt_1", None), _mandate("mdt_2", None)]
        with pytest.raises(AmbiguousMatchError) as exc_info:
            select_one(items, SelectionPolicy.REQUIRE_UNIQUE)
        assert exc_info.value.count == 2

    def test_policy_from_string(self):
        assert SelectionPolicy("most_recent") is SelectionPolicy.MOST_RECENT
