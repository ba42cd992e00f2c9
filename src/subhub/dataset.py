"""
Bulk import of plans, users and subscriptions from a spreadsheet.

One row per subscription. Recognised columns (all optional, others ignored):

    plan_name, plan_description, plan_price, plan_billing_cycle, plan_tier,
    plan_features (comma separated), user_email, user_name,
    subscription_status, subscription_start_date, subscription_end_date

Existing plans and users are matched by name and email and left unchanged.
A subscription is only created when the user has none for that plan yet.
The whole file is applied in one transaction; a bad row aborts the import.
"""

import csv
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import openpyxl
import structlog
from dateutil import parser as date_parser
from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .auth.models import User, UserRole
from .db import utcnow
from .exceptions import ValidationError
from .plans.models import BillingCycle, Plan, PlanTier
from .subscriptions import lifecycle
from .subscriptions.models import Subscription, SubscriptionStatus

logger = structlog.get_logger(__name__)

SessionFactory = Callable[[], AsyncSession]

EXCEL_SUFFIXES = frozenset({".xlsx", ".xlsm"})

_email_adapter = TypeAdapter(EmailStr)


@dataclass
class ImportSummary:
    rows: int = 0
    plans: int = 0
    users: int = 0
    subscriptions: int = 0
    skipped: int = 0


def read_dataset(path: Path, sheet: str | None = None) -> list[dict[str, Any]]:
    """Load rows from a CSV file or the first (or named) sheet of a workbook."""
    suffix = path.suffix.lower()
    if suffix == ".csv":
        with path.open(newline="", encoding="utf-8-sig") as handle:
            return [dict(row) for row in csv.DictReader(handle)]
    if suffix in EXCEL_SUFFIXES:
        return _read_workbook(path, sheet)
    raise ValidationError(
        f"Unsupported dataset format '{suffix or path.name}'", context={"path": str(path)}
    )


def _read_workbook(path: Path, sheet: str | None) -> list[dict[str, Any]]:
    workbook = openpyxl.load_workbook(path, read_only=True, data_only=True)
    try:
        if sheet is None:
            worksheet = workbook.worksheets[0]
        elif sheet in workbook.sheetnames:
            worksheet = workbook[sheet]
        else:
            raise ValidationError(
                f"Worksheet '{sheet}' not found", context={"sheets": workbook.sheetnames}
            )

        values = worksheet.iter_rows(values_only=True)
        header = next(values, None)
        if header is None:
            return []
        keys = ["" if cell is None else str(cell).strip() for cell in header]
        return [
            dict(zip(keys, row, strict=False))
            for row in values
            if any(cell not in (None, "") for cell in row)
        ]
    finally:
        workbook.close()


# ============================================================
# Cell parsing
# ============================================================


def _text(row: dict[str, Any], key: str) -> str | None:
    value = row.get(key)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _price(value: str | None, line: int) -> Decimal:
    if value is None:
        return Decimal("0.00")
    try:
        price = Decimal(value).quantize(Decimal("0.01"))
    except InvalidOperation as e:
        raise ValidationError(f"Row {line}: invalid plan_price '{value}'") from e
    if price < 0:
        raise ValidationError(f"Row {line}: plan_price must not be negative")
    return price


def _choice(enum_type: type, value: str | None, default: Any, column: str, line: int) -> Any:
    if value is None:
        return default
    try:
        return enum_type(value.upper())
    except ValueError as e:
        allowed = ", ".join(member.value for member in enum_type)
        raise ValidationError(f"Row {line}: {column} must be one of {allowed}") from e


def _timestamp(value: Any, column: str, line: int) -> datetime | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        try:
            parsed = date_parser.parse(str(value))
        except (ValueError, OverflowError) as e:
            raise ValidationError(f"Row {line}: invalid {column} '{value}'") from e
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _email(value: str, line: int) -> str:
    try:
        return _email_adapter.validate_python(value).lower()
    except PydanticValidationError as e:
        raise ValidationError(f"Row {line}: invalid user_email '{value}'") from e


# ============================================================
# Import
# ============================================================


async def import_rows(
    session_factory: SessionFactory,
    rows: list[dict[str, Any]],
    hash_password: Callable[[str], str],
) -> ImportSummary:
    """Apply dataset rows. Row numbers in errors count the header as row 1."""
    summary = ImportSummary(rows=len(rows))

    async with session_factory() as session:
        plans: dict[str, Plan] = {}
        users: dict[str, User] = {}
        pairs: set[tuple[str, str]] = set()

        for line, row in enumerate(rows, start=2):
            plan_name = _text(row, "plan_name")
            email_value = _text(row, "user_email")
            if plan_name is None and email_value is None:
                summary.skipped += 1
                continue

            plan = None
            if plan_name is not None:
                plan = plans.get(plan_name) or await _get_or_create_plan(
                    session, row, plan_name, line, summary
                )
                plans[plan_name] = plan

            user = None
            if email_value is not None:
                email = _email(email_value, line)
                user = users.get(email) or await _get_or_create_user(
                    session, row, email, hash_password, summary
                )
                users[email] = user

            if plan is None or user is None:
                continue

            await session.flush()
            if (user.id, plan.id) in pairs or await _has_subscription(session, user.id, plan.id):
                summary.skipped += 1
                continue
            session.add(_build_subscription(row, user, plan, line))
            pairs.add((user.id, plan.id))
            summary.subscriptions += 1

        await session.commit()

    logger.info(
        "dataset.imported",
        rows=summary.rows,
        plans=summary.plans,
        users=summary.users,
        subscriptions=summary.subscriptions,
        skipped=summary.skipped,
    )
    return summary


async def _get_or_create_plan(
    session: AsyncSession, row: dict[str, Any], name: str, line: int, summary: ImportSummary
) -> Plan:
    existing = (await session.execute(select(Plan).where(Plan.name == name))).scalar_one_or_none()
    if existing is not None:
        return existing

    cycle = _text(row, "plan_billing_cycle")
    features = _text(row, "plan_features")
    plan = Plan(
        name=name,
        description=_text(row, "plan_description") or "Imported from dataset",
        price=_price(_text(row, "plan_price"), line),
        billing_cycle=(
            BillingCycle.YEARLY if cycle and cycle.upper() == "YEARLY" else BillingCycle.MONTHLY
        ).value,
        tier=_choice(PlanTier, _text(row, "plan_tier"), PlanTier.BASIC, "plan_tier", line).value,
        features=[f.strip() for f in features.split(",") if f.strip()] if features else [],
        is_active=True,
    )
    session.add(plan)
    summary.plans += 1
    return plan


async def _get_or_create_user(
    session: AsyncSession,
    row: dict[str, Any],
    email: str,
    hash_password: Callable[[str], str],
    summary: ImportSummary,
) -> User:
    existing = (await session.execute(select(User).where(User.email == email))).scalar_one_or_none()
    if existing is not None:
        return existing

    # Imported accounts get an unguessable password and must be reset before login
    user = User(
        email=email,
        name=_text(row, "user_name") or "Dataset User",
        password_hash=hash_password(secrets.token_urlsafe(32)),
        role=UserRole.USER.value,
    )
    session.add(user)
    summary.users += 1
    return user


async def _has_subscription(session: AsyncSession, user_id: str, plan_id: str) -> bool:
    query = select(Subscription.id).where(
        Subscription.user_id == user_id, Subscription.plan_id == plan_id
    )
    return (await session.execute(query.limit(1))).first() is not None


def _build_subscription(row: dict[str, Any], user: User, plan: Plan, line: int) -> Subscription:
    status = _choice(
        SubscriptionStatus,
        _text(row, "subscription_status"),
        SubscriptionStatus.ACTIVE,
        "subscription_status",
        line,
    )
    if status == SubscriptionStatus.ACTIVE and not plan.is_active:
        raise ValidationError(f"Row {line}: plan '{plan.name}' is inactive")

    start = _timestamp(row.get("subscription_start_date"), "subscription_start_date", line)
    start = start or utcnow()
    end = _timestamp(row.get("subscription_end_date"), "subscription_end_date", line)
    end = end or lifecycle.calculate_period_end(start, plan.billing_cycle)
    if end < start:
        raise ValidationError(f"Row {line}: subscription_end_date is before the start date")

    return Subscription(
        user_id=user.id,
        plan_id=plan.id,
        status=status.value,
        start_date=start,
        end_date=end,
        auto_renew=status == SubscriptionStatus.ACTIVE,
    )
