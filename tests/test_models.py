from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from roster_app.errors import InvalidTransition
from roster_app.models import (
    Donor,
    DonorList,
    MembershipStatus,
    EventStatus,
    ImportOperation,
    OperationStatus,
    ReviewStatus,
    User,
    build_identity_key,
    db,
    normalize_identity_part,
    parse_tags,
    serialize_tags,
)


class TestDonorIdentity:
    @pytest.mark.parametrize(
        "first, last, organization, expected",
        [
            ("  Ada ", "LOVELACE", None, "ind:ada|lovelace"),
            ("Mary  Ann", "Evans", "Ignored Org", "ind:mary ann|evans"),
            ("Ada", None, "Acme   Foundation", "org:acme foundation"),
            (None, None, "Acme", "org:acme"),
            ("Ada", None, None, None),
            (None, None, "   ", None),
        ],
    )
    def test_build_identity_key(self, first, last, organization, expected):
        assert build_identity_key(first, last, organization) == expected

    def test_normalize_identity_part(self):
        assert normalize_identity_part("  Jean\t Luc  ") == "jean luc"
        assert normalize_identity_part(None) == ""

    def test_identity_key_is_set_on_creation(self, app):
        donor = Donor(first_name="Ada", last_name="Lovelace")
        db.session.add(donor)
        db.session.commit()

        assert donor.identity_key == "ind:ada|lovelace"
        assert Donor.find_by_identity_key("ind:ada|lovelace").id == donor.id
        assert donor.display_name == "Ada Lovelace"
        assert donor.is_organization is False
        assert donor.total_donations == Decimal("0")
        assert donor.excluded is False

    def test_donor_cannot_hold_two_identities(self, app):
        with pytest.raises(ValueError):
            Donor(first_name="Ada", last_name="Lovelace", organization_name="Acme")

    def test_donor_requires_an_identity(self, app):
        with pytest.raises(ValueError):
            Donor(first_name="Ada")

    def test_identity_key_is_unique(self, app, donor_factory):
        donor_factory(organization_name="Acme")
        db.session.add(Donor(organization_name="ACME"))

        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()

    def test_find_by_id(self, donor_factory):
        donor = donor_factory()

        assert Donor.find_by_id(donor.id) is donor
        assert Donor.find_by_id(9999) is None


class TestDonorTags:
    def test_parse_tags_accepts_commas_and_semicolons(self):
        assert parse_tags("gala; arts ,, board") == {"gala", "arts", "board"}
        assert parse_tags(None) == set()

    def test_serialize_tags_sorts_case_insensitively(self):
        assert serialize_tags({"gala", "Arts", "board"}) == "Arts,board,gala"
        assert serialize_tags([]) is None

    def test_tags_are_normalized_on_assignment(self, donor_factory):
        donor = donor_factory(tags="gala;Arts")

        assert donor.tags == "Arts,gala"
        donor.tag_set = donor.tag_set | {"board"}
        assert donor.tags == "Arts,board,gala"
        assert donor.to_dict()["tags"] == ["Arts", "board", "gala"]

    def test_is_referenced(self, donor_factory, event_factory):
        from roster_app.services import ListGenerator

        listed = donor_factory(total_donations=Decimal("10"))
        event = event_factory(criteria_min_giving_level=Decimal("5"))
        unlisted = donor_factory(total_donations=Decimal("1"))
        ListGenerator().generate(event.id)

        assert listed.is_referenced() is True
        assert unlisted.is_referenced() is False


class TestEventLifecycle:
    @pytest.mark.parametrize(
        "start, target",
        [
            (EventStatus.PLANNING, EventStatus.LIST_GENERATION),
            (EventStatus.PLANNING, EventStatus.REVIEW),
            (EventStatus.LIST_GENERATION, EventStatus.PLANNING),
            (EventStatus.REVIEW, EventStatus.LIST_GENERATION),
            (EventStatus.READY, EventStatus.COMPLETE),
            (EventStatus.READY, EventStatus.REVIEW),
        ],
    )
    def test_allowed_transitions(self, event_factory, start, target):
        event = event_factory(status=start)

        assert event.transition_to(target).status == target

    @pytest.mark.parametrize(
        "start, target",
        [
            (EventStatus.PLANNING, EventStatus.READY),
            (EventStatus.PLANNING, EventStatus.COMPLETE),
            (EventStatus.COMPLETE, EventStatus.PLANNING),
            (EventStatus.LIST_GENERATION, EventStatus.READY),
        ],
    )
    def test_forbidden_transitions(self, event_factory, start, target):
        event = event_factory(status=start)

        with pytest.raises(InvalidTransition):
            event.transition_to(target)
        assert event.status == start

    def test_same_status_is_a_no_op(self, event_factory):
        event = event_factory(status=EventStatus.REVIEW)

        assert event.transition_to("review").status == EventStatus.REVIEW

    def test_ready_needs_a_completed_list(self, event_factory):
        event = event_factory(status=EventStatus.REVIEW)
        with pytest.raises(InvalidTransition):
            event.transition_to(EventStatus.READY)

        event.donor_list = DonorList(name="Empty list", review_status=ReviewStatus.COMPLETED)

        assert event.transition_to(EventStatus.READY).status == EventStatus.READY

    def test_allows_list_edits(self, event_factory):
        assert event_factory(status=EventStatus.REVIEW).allows_list_edits() is True
        assert event_factory(status=EventStatus.LIST_GENERATION).allows_list_edits() is True
        assert event_factory(status=EventStatus.PLANNING).allows_list_edits() is False
        assert event_factory(status=EventStatus.READY).allows_list_edits() is False

    def test_status_from_value(self):
        assert EventStatus.from_value("ListGeneration") == EventStatus.LIST_GENERATION
        assert EventStatus.from_value("list generation") == EventStatus.LIST_GENERATION
        with pytest.raises(ValueError):
            EventStatus.from_value("archived")


class TestMembershipReason:
    @pytest.mark.parametrize(
        "status, reason, valid",
        [
            (MembershipStatus.PENDING, None, True),
            (MembershipStatus.APPROVED, None, True),
            (MembershipStatus.EXCLUDED, "Lapsed", True),
            (MembershipStatus.AUTO_EXCLUDED, "Donor is deceased", True),
            (MembershipStatus.EXCLUDED, None, False),
            (MembershipStatus.AUTO_EXCLUDED, "   ", False),
            (MembershipStatus.APPROVED, "Lapsed", False),
        ],
    )
    def test_check_exclude_reason(self, event_with_list, status, reason, valid):
        _, donor_list, _ = event_with_list
        membership = donor_list.memberships[0]
        membership.status = status
        membership.exclude_reason = reason

        if valid:
            db.session.commit()
            assert membership.status == status
        else:
            with pytest.raises(ValueError, match="exclusion reason"):
                db.session.commit()
            db.session.rollback()


class TestUserAndOperations:
    def test_password_hashing(self, app):
        user = User(username="reviewer", email="reviewer@example.com", password_hash="x")
        user.set_password("s3cret")

        assert user.check_password("s3cret") is True
        assert user.check_password("wrong") is False
        assert user.get_full_name() == "reviewer"

    def test_import_operation_defaults(self, app):
        operation = ImportOperation(id="donor_import_abc")
        db.session.add(operation)
        db.session.commit()

        assert operation.status == OperationStatus.QUEUED
        assert operation.progress == 0
