#!/usr/bin/env python
"""
CLI management commands for SubHub.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any

import click
import uvicorn
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .audit import AuditService
from .auth.core import hash_password
from .auth.models import User, UserRole
from .dataset import import_rows, read_dataset
from .db import create_all_tables, get_session_factory, utcnow
from .exceptions import ValidationError
from .plans.models import BillingCycle, Plan, PlanTier
from .plans.service import PlanService
from .settings import settings
from .subscriptions import lifecycle
from .subscriptions.models import Subscription, SubscriptionStatus
from .subscriptions.service import SubscriptionService

SessionFactory = Callable[[], AsyncSession]


@dataclass
class CLIDependencies:
    """Bundle of injectable dependencies used by CLI commands."""

    session_factory: SessionFactory
    create_tables: Callable[[], Awaitable[None]]
    hash_password: Callable[[str], str]


def _get_cli_dependencies() -> CLIDependencies:
    """Return the default dependency bundle for CLI commands."""
    return CLIDependencies(
        session_factory=get_session_factory(),
        create_tables=create_all_tables,
        hash_password=hash_password,
    )


SEED_USERS: list[dict[str, Any]] = [
    {"email": "admin@example.com", "name": "Admin User", "password": "admin123", "role": UserRole.ADMIN},
    {"email": "user@example.com", "name": "Test User", "password": "user123", "role": UserRole.USER},
]

SEED_PLANS: list[dict[str, Any]] = [
    {
        "name": "Basic Plan",
        "description": "Perfect for individuals getting started",
        "price": Decimal("9.99"),
        "billing_cycle": BillingCycle.MONTHLY,
        "tier": PlanTier.BASIC,
        "features": ["Up to 5 projects", "10GB storage", "Email support", "Basic analytics"],
    },
    {
        "name": "Pro Plan",
        "description": "Ideal for growing teams and businesses",
        "price": Decimal("29.99"),
        "billing_cycle": BillingCycle.MONTHLY,
        "tier": PlanTier.PRO,
        "features": [
            "Unlimited projects",
            "100GB storage",
            "Priority support",
            "Advanced analytics",
            "Team collaboration",
            "API access",
        ],
    },
    {
        "name": "Enterprise Plan",
        "description": "For large organizations with custom needs",
        "price": Decimal("99.99"),
        "billing_cycle": BillingCycle.MONTHLY,
        "tier": PlanTier.ENTERPRISE,
        "features": [
            "Everything in Pro",
            "Unlimited storage",
            "24/7 phone support",
            "Custom integrations",
            "Advanced security",
            "Dedicated account manager",
            "SLA guarantee",
        ],
    },
]


async def seed_database(deps: CLIDependencies) -> dict[str, int]:
    """Insert demo users, plans and one subscription. Existing rows are left alone."""
    created = {"users": 0, "plans": 0, "subscriptions": 0}

    async with deps.session_factory() as session:
        users: dict[str, User] = {}
        for seed in SEED_USERS:
            user = (
                await session.execute(select(User).where(User.email == seed["email"]))
            ).scalar_one_or_none()
            if user is None:
                user = User(
                    email=seed["email"],
                    name=seed["name"],
                    password_hash=deps.hash_password(seed["password"]),
                    role=seed["role"].value,
                )
                session.add(user)
                created["users"] += 1
            users[seed["email"]] = user

        plans: dict[str, Plan] = {}
        for seed in SEED_PLANS:
            plan = (
                await session.execute(select(Plan).where(Plan.name == seed["name"]))
            ).scalar_one_or_none()
            if plan is None:
                plan = Plan(
                    name=seed["name"],
                    description=seed["description"],
                    price=seed["price"],
                    billing_cycle=seed["billing_cycle"].value,
                    tier=seed["tier"].value,
                    features=list(seed["features"]),
                    is_active=True,
                )
                session.add(plan)
                created["plans"] += 1
            plans[seed["name"]] = plan

        await session.flush()

        user = users["user@example.com"]
        basic = plans["Basic Plan"]
        existing = await session.execute(
            select(Subscription.id).where(
                Subscription.user_id == user.id, Subscription.plan_id == basic.id
            )
        )
        if existing.first() is None:
            start = utcnow()
            session.add(
                Subscription(
                    user_id=user.id,
                    plan_id=basic.id,
                    status=SubscriptionStatus.ACTIVE.value,
                    start_date=start,
                    end_date=lifecycle.calculate_period_end(start, basic.billing_cycle),
                    auto_renew=True,
                )
            )
            created["subscriptions"] += 1

        await session.commit()

    return created


async def expire_subscriptions_now(deps: CLIDependencies) -> list[str]:
    audit = AuditService(deps.session_factory)
    async with deps.session_factory() as session:
        service = SubscriptionService(session, PlanService(session, audit), audit)
        expired = await service.expire_due_subscriptions()
        return [subscription.id for subscription in expired]


@click.group()
def cli() -> None:
    """SubHub CLI."""
    pass


@cli.command()
@click.option("--host", default=None, help="Bind address  [default: settings.host]")
@click.option("--port", default=None, type=int, help="Bind port  [default: settings.port]")
def serve(host: str | None, port: int | None) -> None:
    """Run the API server."""
    uvicorn.run(
        "subhub.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=settings.is_development,
        log_level=settings.observability.log_level.value.lower(),
    )


@cli.command()
def init_database() -> None:
    """Create all database tables."""
    deps = _get_cli_dependencies()
    click.echo("Initializing database...")
    asyncio.run(deps.create_tables())
    click.echo("Database initialized successfully!")


@cli.command()
@click.option("--email", prompt=True, help="Admin user email")
@click.option("--password", prompt=True, hide_input=True, help="Admin user password")
@click.option("--name", default="Admin User", show_default=True, help="Admin display name")
def create_admin(email: str, password: str, name: str) -> None:
    """Create an admin user."""
    deps = _get_cli_dependencies()
    email = email.strip().lower()

    async def _create_admin() -> bool:
        async with deps.session_factory() as session:
            existing = await session.execute(select(User.id).where(User.email == email))
            if existing.first():
                return False

            session.add(
                User(
                    email=email,
                    name=name,
                    password_hash=deps.hash_password(password),
                    role=UserRole.ADMIN.value,
                )
            )
            await session.commit()
            return True

    if asyncio.run(_create_admin()):
        click.echo(f"Admin user {email} created successfully!")
    else:
        click.echo(f"User with email {email} already exists!")


@cli.command()
def seed() -> None:
    """Load demo users, plans and a sample subscription."""
    deps = _get_cli_dependencies()
    created = asyncio.run(seed_database(deps))
    click.echo(
        f"Seeded {created['users']} users, {created['plans']} plans, "
        f"{created['subscriptions']} subscriptions"
    )
    click.echo("Admin: admin@example.com / admin123")
    click.echo("User: user@example.com / user123")


@cli.command()
def expire_subscriptions() -> None:
    """Expire every ACTIVE subscription whose end date has passed."""
    deps = _get_cli_dependencies()
    expired = asyncio.run(expire_subscriptions_now(deps))
    click.echo(f"Expired {len(expired)} subscriptions")
    for subscription_id in expired:
        click.echo(f"  {subscription_id}")


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--sheet", default=None, help="Worksheet to read from an Excel file")
def import_dataset(path: Path, sheet: str | None) -> None:
    """Import plans, users and subscriptions from a CSV or Excel file."""
    deps = _get_cli_dependencies()
    try:
        rows = read_dataset(path, sheet)
        summary = asyncio.run(import_rows(deps.session_factory, rows, deps.hash_password))
    except ValidationError as e:
        raise click.ClickException(e.message) from e

    click.echo(
        f"Imported {summary.plans} plans, {summary.users} users, "
        f"{summary.subscriptions} subscriptions from {summary.rows} rows"
    )
    if summary.skipped:
        click.echo(f"Skipped {summary.skipped} rows")


if __name__ == "__main__":
    cli()
