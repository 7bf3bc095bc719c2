import json
from decimal import Decimal

from roster_app.models import Donor, DonorList, Event, EventStatus, User, db


def test_create_user(runner):
    result = runner.invoke(
        args=["roster", "create-user", "--username", "reviewer", "--email", "r@example.com", "--password", "pw12345"]
    )

    assert result.exit_code == 0, result.output
    user = User.find_by_username("reviewer")
    assert user.check_password("pw12345")
    assert user.is_super_admin is False


def test_create_user_refuses_duplicates(runner, other_user):
    result = runner.invoke(
        args=["roster", "create-user", "--username", "otheruser", "--email", "x@example.com", "--password", "pw"]
    )

    assert result.exit_code != 0
    assert "already exists" in result.output


def test_generate_list(runner, event_factory, donor_factory):
    donor_factory(total_donations=Decimal("800"), city="Topeka")
    donor_factory(total_donations=Decimal("900"), city="Wichita")
    event = event_factory()

    result = runner.invoke(args=["roster", "generate-list", str(event.id), "--city", "topeka"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["event_id"] == event.id
    assert payload["total_donors"] == 1


def test_generate_list_reports_domain_errors(runner, event_with_list):
    event, _, _ = event_with_list

    result = runner.invoke(args=["roster", "generate-list", str(event.id)])

    assert result.exit_code != 0
    assert "confirm to regenerate" in result.output


def test_recount_list(runner, event_with_list):
    _, donor_list, _ = event_with_list
    donor_list.pending = 0
    donor_list.approved = 3
    db.session.commit()

    result = runner.invoke(args=["roster", "recount-list", str(donor_list.id)])

    assert result.exit_code == 0, result.output
    assert json.loads(result.output)["pending"] == 3
    assert db.session.get(DonorList, donor_list.id).approved == 0


def test_recount_unknown_list(runner):
    result = runner.invoke(args=["roster", "recount-list", "404"])

    assert result.exit_code != 0
    assert "not found" in result.output


def test_seed_demo_creates_donors_and_event(runner):
    result = runner.invoke(args=["roster", "seed-demo", "--donors", "15", "--seed", "7"])

    assert result.exit_code == 0, result.output
    assert "Created 15 donor(s)" in result.output
    assert Donor.query.count() == 15
    event = Event.query.one()
    assert event.status == EventStatus.PLANNING
    assert all(donor.identity_key for donor in Donor.query)


def test_seed_demo_skips_existing_identities(runner):
    first = runner.invoke(args=["roster", "seed-demo", "--donors", "5", "--seed", "3", "--no-event"])
    assert first.exit_code == 0, first.output

    again = runner.invoke(args=["roster", "seed-demo", "--donors", "5", "--seed", "3", "--no-event"])

    assert again.exit_code == 0, again.output
    assert Event.query.count() == 0
    assert len({donor.identity_key for donor in Donor.query}) == Donor.query.count()
