"""Tests for tenant visibility rules"""

import pytest
from fastapi import HTTPException

from portal.models import Organization
from portal.permissions import (
    ALL_ORGANIZATIONS,
    can_manage_billing,
    can_view_organization,
    ensure_organization_visible,
    scope_query,
    visible_organization_ids,
)


class TestVisibleOrganizations:
    def test_staff_see_everything(self, db, users):
        assert visible_organization_ids(db, users.admin) is ALL_ORGANIZATIONS
        assert visible_organization_ids(db, users.agent) is ALL_ORGANIZATIONS

    def test_partner_sees_own_and_managed_clients(self, db, users, orgs):
        assert visible_organization_ids(db, users.partner) == {orgs.partner.id, orgs.client.id}

    def test_client_sees_only_own_organization(self, db, users, orgs):
        assert visible_organization_ids(db, users.client) == {orgs.client.id}

    def test_user_without_organization_sees_nothing(self, db, users):
        users.client.organization_id = None
        assert visible_organization_ids(db, users.client) == set()

    def test_can_view_organization(self, db, users, orgs):
        assert can_view_organization(db, users.partner, orgs.client.id)
        assert not can_view_organization(db, users.partner, orgs.other.id)
        assert not can_view_organization(db, users.admin, None)


class TestEnsureVisible:
    def test_hidden_organization_is_not_found(self, db, users, orgs):
        with pytest.raises(HTTPException) as exc_info:
            ensure_organization_visible(db, users.client, orgs.other.id, "Organization not found")
        assert exc_info.value.status_code == 404
        assert exc_info.value.detail == "Organization not found"

    def test_visible_organization_passes(self, db, users, orgs):
        ensure_organization_visible(db, users.client, orgs.client.id, "Organization not found")


class TestScopeQuery:
    def test_client_query_is_restricted(self, db, users, orgs):
        query = scope_query(db.query(Organization), Organization.id, db, users.client)
        assert [o.id for o in query.all()] == [orgs.client.id]

    def test_staff_query_is_untouched(self, db, users):
        query = scope_query(db.query(Organization), Organization.id, db, users.agent)
        assert query.count() == 4

    def test_no_visibility_returns_nothing(self, db, users):
        users.client.organization_id = None
        query = scope_query(db.query(Organization), Organization.id, db, users.client)
        assert query.count() == 0


class TestBilling:
    def test_billing_rights(self, users):
        assert can_manage_billing(users.admin)
        assert can_manage_billing(users.manager)
        assert not can_manage_billing(users.agent)
        assert not can_manage_billing(users.partner)
        assert not can_manage_billing(users.client)
