"""
CLI commands for donor list management and local setup.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

import click
from faker import Faker
from flask import current_app
from flask.cli import with_appcontext

from roster_app.errors import RosterError
from roster_app.models import Donor, Event, EventStatus, User, build_identity_key, db
from roster_app.services import DonorListReviewService, ListGenerator, recount_donor_list


@click.group(name="roster")
def roster_cli():
    """Donor roster management commands."""


@roster_cli.command("init-db")
@with_appcontext
def init_db():
    """Create all database tables."""
    db.create_all()
    click.echo("Database tables created.")


@roster_cli.command("create-user")
@click.option("--username", required=True)
@click.option("--email", required=True)
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
@click.option("--super-admin", is_flag=True, help="Grant access to every import operation.")
@with_appcontext
def create_user(username: str, email: str, password: str, super_admin: bool):
    """Create a staff account."""
    if User.find_by_username(username):
        raise click.ClickException(f"User '{username}' already exists.")
    user = User(username=username, email=email, is_super_admin=super_admin)
    user.set_password(password)
    user.save()
    click.echo(f"Created user {username} (id={user.id}).")


@roster_cli.command("generate-list")
@click.argument("event_id", type=int)
@click.option("--min-giving-level", type=Decimal, default=None, help="Override the event's minimum giving level.")
@click.option("--city", default=None)
@click.option("--focus", default=None)
@click.option("--size", type=int, default=None)
@click.option("--confirm-regenerate", is_flag=True, help="Replace an existing list, discarding reviews.")
@click.option("--no-auto-exclude", is_flag=True, help="Skip the auto-exclusion rule pass.")
@with_appcontext
def generate_list(
    event_id: int,
    min_giving_level: Optional[Decimal],
    city: Optional[str],
    focus: Optional[str],
    size: Optional[int],
    confirm_regenerate: bool,
    no_auto_exclude: bool,
):
    """Generate (or regenerate) the donor list for EVENT_ID."""
    overrides = {
        key: value
        for key, value in {
            "min_giving_level": min_giving_level,
            "city": city,
            "focus": focus,
            "size": size,
        }.items()
        if value is not None
    }
    try:
        donor_list = ListGenerator().generate(
            event_id,
            criteria_overrides=overrides,
            confirm_regenerate=confirm_regenerate,
            auto_exclude=False if no_auto_exclude else None,
        )
    except RosterError as exc:
        raise click.ClickException(exc.message) from exc
    click.echo(json.dumps(donor_list.to_dict(), indent=2, sort_keys=True))


@roster_cli.command("recount-list")
@click.argument("list_id", type=int)
@with_appcontext
def recount_list(list_id: int):
    """Recompute a list's counters from its memberships."""
    service = DonorListReviewService()
    try:
        donor_list = service.lock_list(list_id)
    except RosterError as exc:
        raise click.ClickException(exc.message) from exc
    recount_donor_list(db.session, donor_list)
    db.session.commit()
    click.echo(json.dumps(donor_list.to_dict(), indent=2, sort_keys=True))


DEMO_TAGS = ("VIP", "Monthly", "Annual", "First Gift", "Corporate", "Foundation", "Arts", "Education")
DEMO_CITIES = ("Kansas City", "Lawrence", "Topeka", "Wichita", "Overland Park", "Olathe")


def _demo_donor_values(fake: Faker) -> dict:
    if fake.boolean(chance_of_getting_true=80):
        values = {"first_name": fake.first_name(), "last_name": fake.last_name()}
    else:
        values = {"organization_name": f"{fake.company()} Foundation"}

    first_gift = fake.date_between(start_date="-5y", end_date="-1y")
    last_gift = fake.date_between(start_date=first_gift, end_date="today")
    last_amount = Decimal(fake.random_int(25, 5000))
    values.update(
        total_donations=last_amount + Decimal(fake.random_int(0, 20000)),
        total_pledges=Decimal(fake.random_int(0, 5000)),
        largest_gift=last_amount,
        first_gift_date=first_gift,
        last_gift_date=last_gift,
        last_gift_amount=last_amount,
        city=fake.random_element(DEMO_CITIES),
        address_line1=fake.street_address(),
        tags=set(fake.random_elements(DEMO_TAGS, length=fake.random_int(0, 3), unique=True)),
        deceased=fake.boolean(chance_of_getting_true=2),
        excluded=fake.boolean(chance_of_getting_true=5),
    )
    return values


@roster_cli.command("seed-demo")
@click.option("--donors", "donor_count", type=click.IntRange(min=1), default=50, show_default=True)
@click.option("--seed", type=int, default=None, help="Faker seed for a repeatable data set.")
@click.option("--no-event", is_flag=True, help="Only create donors.")
@with_appcontext
def seed_demo(donor_count: int, seed: Optional[int], no_event: bool):
    """Fill an empty development database with fake donors and one event."""
    fake = Faker("en_US")
    if seed is not None:
        fake.seed_instance(seed)

    known_keys = {key for (key,) in db.session.query(Donor.identity_key)}
    created = 0
    # Faker repeats names; duplicates are skipped, so give up after a bounded number of draws.
    for _ in range(donor_count * 3):
        if created == donor_count:
            break
        values = _demo_donor_values(fake)
        key = build_identity_key(values.get("first_name"), values.get("last_name"), values.get("organization_name"))
        if key in known_keys:
            continue
        known_keys.add(key)
        db.session.add(Donor(**values))
        created += 1

    event = None
    if not no_event:
        event = Event(
            name="Donor Appreciation Dinner",
            event_type="Dinner",
            date=datetime.now(timezone.utc) + timedelta(days=60),
            location=fake.random_element(DEMO_CITIES),
            capacity=25,
            criteria_min_giving_level=Decimal("1000"),
            status=EventStatus.PLANNING,
        )
        db.session.add(event)
    db.session.commit()

    current_app.logger.info("Demo data seeded", extra={"donors_created": created, "seed": seed})
    summary = f"Created {created} donor(s)"
    if event is not None:
        summary += f" and event {event.id} ({event.name})"
    click.echo(summary + ".")
