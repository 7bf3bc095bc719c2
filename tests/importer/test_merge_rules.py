from datetime import date
from decimal import Decimal

from roster_app.importer.pipeline import merge_donor_fields, resolve_identity


def _existing(**overrides):
    snapshot = {
        "nick_name": None,
        "total_donations": Decimal("100"),
        "total_pledges": Decimal("20"),
        "largest_gift": Decimal("60"),
        "largest_gift_appeal": "Spring Appeal",
        "first_gift_date": date(2018, 1, 10),
        "last_gift_date": date(2023, 5, 1),
        "last_gift_amount": Decimal("25"),
        "last_gift_request": "Mail",
        "last_gift_appeal": "Spring Appeal",
        "city": "Kansas City",
        "tags": "Board,gala",
        "excluded": False,
        "deceased": False,
    }
    snapshot.update(overrides)
    return snapshot


def test_full_name_wins_over_organization():
    identity = resolve_identity({"first_name": "Jane", "last_name": "Doe", "organization_name": "Doe Family Trust"})

    assert identity.key == "ind:jane|doe"
    assert not identity.is_organization
    assert identity.fields["organization_name"] is None


def test_organization_wins_over_partial_name():
    identity = resolve_identity({"first_name": "Jane", "organization_name": "  Acme   Foundation "})

    assert identity.key == "org:acme foundation"
    assert identity.is_organization
    assert identity.fields["first_name"] is None


def test_partial_name_without_organization_has_no_identity():
    assert resolve_identity({"first_name": "Jane"}) is None
    assert resolve_identity({}) is None


def test_identity_matching_ignores_case_and_whitespace():
    first = resolve_identity({"first_name": "JANE", "last_name": " doe "})
    second = resolve_identity({"first_name": "jane", "last_name": "Doe"})

    assert first.key == second.key


def test_aggregates_are_added():
    merged = merge_donor_fields(_existing(), {"total_donations": Decimal("50"), "total_pledges": Decimal("5")})

    assert merged["total_donations"] == Decimal("150")
    assert merged["total_pledges"] == Decimal("25")


def test_missing_aggregates_leave_totals_alone():
    merged = merge_donor_fields(_existing(), {})

    assert merged["total_donations"] == Decimal("100")
    assert merged["total_pledges"] == Decimal("20")


def test_largest_gift_only_grows_and_carries_its_appeal():
    smaller = merge_donor_fields(_existing(), {"largest_gift": Decimal("40"), "largest_gift_appeal": "Gala"})
    larger = merge_donor_fields(_existing(), {"largest_gift": Decimal("75"), "largest_gift_appeal": "Gala"})

    assert smaller["largest_gift"] == Decimal("60")
    assert smaller["largest_gift_appeal"] == "Spring Appeal"
    assert larger["largest_gift"] == Decimal("75")
    assert larger["largest_gift_appeal"] == "Gala"


def test_largest_gift_is_the_maximum_over_a_sequence_of_merges():
    snapshot = _existing(largest_gift=None, largest_gift_appeal=None)
    gifts = [Decimal("40"), Decimal("125"), Decimal("90"), None, Decimal("125"), Decimal("10")]

    for index, gift in enumerate(gifts):
        snapshot = merge_donor_fields(snapshot, {"largest_gift": gift, "largest_gift_appeal": f"Appeal {index}"})

    assert snapshot["largest_gift"] == max(gift for gift in gifts if gift is not None)
    assert snapshot["largest_gift_appeal"] == "Appeal 1"


def test_first_gift_date_moves_earlier_only():
    earlier = merge_donor_fields(_existing(), {"first_gift_date": date(2015, 3, 3)})
    later = merge_donor_fields(_existing(), {"first_gift_date": date(2020, 3, 3)})

    assert earlier["first_gift_date"] == date(2015, 3, 3)
    assert later["first_gift_date"] == date(2018, 1, 10)


def test_newer_last_gift_replaces_last_gift_details():
    merged = merge_donor_fields(
        _existing(),
        {
            "last_gift_date": date(2024, 2, 2),
            "last_gift_amount": Decimal("90"),
            "last_gift_request": "Email",
        },
    )

    assert merged["last_gift_date"] == date(2024, 2, 2)
    assert merged["last_gift_amount"] == Decimal("90")
    assert merged["last_gift_request"] == "Email"
    # Absent incoming value keeps the existing one.
    assert merged["last_gift_appeal"] == "Spring Appeal"


def test_older_last_gift_date_is_ignored_but_details_still_replace():
    merged = merge_donor_fields(
        _existing(),
        {"last_gift_date": date(2020, 1, 1), "last_gift_amount": Decimal("5")},
    )

    assert merged["last_gift_date"] == date(2023, 5, 1)
    assert merged["last_gift_amount"] == Decimal("5")


def test_last_gift_channel_and_appeal_replace_without_a_gift_date():
    merged = merge_donor_fields(_existing(), {"last_gift_request": "Email", "last_gift_appeal": "Year End"})

    assert merged["last_gift_request"] == "Email"
    assert merged["last_gift_appeal"] == "Year End"
    assert merged["last_gift_date"] == date(2023, 5, 1)
    assert merged["last_gift_amount"] == Decimal("25")


def test_tags_are_unioned():
    merged = merge_donor_fields(_existing(), {"tags": frozenset({"gala", "Volunteer"})})

    assert merged["tags"] == "Board,gala,Volunteer"


def test_present_flags_replace_existing_flags():
    merged = merge_donor_fields(_existing(excluded=True), {"excluded": False, "deceased": True})

    assert merged["excluded"] is False
    assert merged["deceased"] is True


def test_absent_flags_keep_existing_flags():
    merged = merge_donor_fields(_existing(excluded=True, deceased=True), {"excluded": None})

    assert merged["excluded"] is True
    assert merged["deceased"] is True


def test_present_scalars_replace_and_absent_scalars_keep():
    merged = merge_donor_fields(_existing(), {"city": "Overland Park", "nick_name": "Janie"})
    kept = merge_donor_fields(_existing(), {"city": None})

    assert merged["city"] == "Overland Park"
    assert merged["nick_name"] == "Janie"
    assert kept["city"] == "Kansas City"


def test_merge_does_not_touch_identity_or_inputs():
    existing = _existing()
    incoming = {"first_name": "Other", "total_donations": Decimal("1")}

    merged = merge_donor_fields(existing, incoming)

    assert "first_name" not in merged
    assert existing["total_donations"] == Decimal("100")
