"""
Tests for engine/resolver.py: reviewer identity resolution.

Covers:
  - Identifier priority: by > reviewer > user > account > ip
  - Blank identifiers are skipped, an empty mapping is rejected
  - IP addresses become trimmed AnonymousRefs, only where the type allows IPs
  - Entity reviewers must be registered and of an allowed type
"""

from __future__ import annotations

import ipaddress

import pytest

from reviewable.db.repositories.entity_repo import EntityRepository
from reviewable.engine.resolver import ReviewerResolver, is_ip, pick_identifier
from reviewable.errors import InvalidReviewerError
from reviewable.models.reviewer import AnonymousRef, Entity, EntityRef


@pytest.fixture
def resolver(in_memory_db) -> ReviewerResolver:
    return ReviewerResolver(EntityRepository(in_memory_db))


class TestIsIp:
    @pytest.mark.parametrize("value", ["10.0.0.1", " 10.0.0.1 ", "::1", "2001:db8::7"])
    def test_ip_strings(self, value):
        assert is_ip(value)

    def test_ip_objects(self):
        assert is_ip(ipaddress.ip_address("192.168.1.1"))

    @pytest.mark.parametrize("value", ["user:7", "", "999.1.1.1", 7, None])
    def test_non_ips(self, value):
        assert not is_ip(value)


class TestPickIdentifier:
    def test_priority_order(self):
        by = EntityRef(entity_type="user", entity_id=1)
        user = EntityRef(entity_type="user", entity_id=2)
        assert pick_identifier({"ip": "10.0.0.1", "user": user, "by": by}) is by
        assert pick_identifier({"ip": "10.0.0.1", "account": user}) is user
        assert pick_identifier({"ip": "10.0.0.1"}) == "10.0.0.1"

    def test_blank_values_skipped(self):
        assert pick_identifier({"by": None, "reviewer": "  ", "ip": "10.0.0.1"}) == "10.0.0.1"

    @pytest.mark.parametrize("identifiers", [None, {}])
    def test_empty_rejected(self, identifiers):
        with pytest.raises(InvalidReviewerError, match="can't be nil"):
            pick_identifier(identifiers)

    def test_only_unknown_keys_yields_none(self):
        assert pick_identifier({"rating": 3}) is None


class TestReviewerResolver:
    def test_registered_user_resolves(self, resolver, registry, user7):
        ref = resolver.resolve({"by": user7}, registry.get("product"))
        assert ref == EntityRef(entity_type="user", entity_id="7")

    def test_entity_model_converted_to_ref(self, resolver, registry, user7):
        entity = Entity(entity_type="user", entity_id=7)
        assert resolver.resolve({"user": entity}, registry.get("product")) == user7

    def test_unregistered_entity_rejected(self, resolver, registry):
        ghost = EntityRef(entity_type="user", entity_id=404)
        with pytest.raises(InvalidReviewerError, match="not registered"):
            resolver.resolve({"by": ghost}, registry.get("product"))

    def test_disallowed_reviewer_type_rejected(self, resolver, registry, account3):
        with pytest.raises(InvalidReviewerError, match="wrong type"):
            resolver.resolve({"account": account3}, registry.get("product"))

    def test_any_registered_type_allowed_when_unrestricted(self, resolver, registry, account3):
        assert resolver.resolve({"account": account3}, registry.get("post")) == account3

    @pytest.mark.parametrize("value", ["user:7", 7, object()])
    def test_wrong_type_rejected(self, resolver, registry, value):
        with pytest.raises(InvalidReviewerError, match="wrong type"):
            resolver.resolve({"by": value}, registry.get("post"))

    def test_ip_rejected_when_disabled(self, resolver, registry):
        with pytest.raises(InvalidReviewerError, match="IP is disabled"):
            resolver.resolve({"ip": "10.0.0.1"}, registry.get("product"))

    def test_ip_accepted_and_trimmed(self, resolver, registry):
        ref = resolver.resolve({"ip": " 10.0.0.1 "}, registry.get("post"))
        assert ref == AnonymousRef(ip="10.0.0.1")
        assert ref.reviewer_key == "ip:10.0.0.1"

    def test_ip_passed_under_entity_key(self, resolver, registry):
        ref = resolver.resolve({"by": "10.0.0.9"}, registry.get("photo"))
        assert isinstance(ref, AnonymousRef)

    def test_entity_wins_over_ip(self, resolver, registry, user7):
        ref = resolver.resolve({"user": user7, "ip": "10.0.0.1"}, registry.get("post"))
        assert ref == user7

    def test_missing_reviewer_rejected(self, resolver, registry):
        with pytest.raises(InvalidReviewerError):
            resolver.resolve({}, registry.get("post"))
