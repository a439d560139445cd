"""Shared fixtures for calendar_resolver tests."""

from collections.abc import Generator
from datetime import datetime, timezone
from typing import Any, Callable

import pytest

from calendar_resolver.config_manager import EngineSettings
from calendar_resolver.ics_block_parser import IcsBlockParser
from calendar_resolver.resolver import CalendarEngine, OccurrenceResolver


def pytest_configure(config: Any) -> None:
    """Register markers used across the suite."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "integration: End-to-end parse and resolve tests")


@pytest.fixture(autouse=True)
def clean_resolver_environment(monkeypatch: Any) -> Generator[None, Any, None]:
    """Keep CALENDAR_RESOLVER_* variables from the host out of the tests."""
    for name in (
        "CALENDAR_RESOLVER_TIMEZONE",
        "CALENDAR_RESOLVER_MAX_OCCURRENCES_PER_RULE",
        "CALENDAR_RESOLVER_ENABLE_RRULE_EXPANSION",
        "CALENDAR_RESOLVER_PARSER_CONCURRENCY",
        "CALENDAR_RESOLVER_LOG_LEVEL",
        "CALENDAR_RESOLVER_DEBUG",
    ):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def utc_settings() -> EngineSettings:
    """Settings pinned to UTC so floating and date-only values are deterministic."""
    return EngineSettings(timezone="UTC")


@pytest.fixture
def parser() -> IcsBlockParser:
    return IcsBlockParser(timezone.utc)


@pytest.fixture
def resolver(utc_settings: EngineSettings) -> OccurrenceResolver:
    return OccurrenceResolver(utc_settings)


@pytest.fixture
def engine(utc_settings: EngineSettings) -> CalendarEngine:
    return CalendarEngine(utc_settings)


@pytest.fixture
def june_week() -> tuple[datetime, datetime]:
    """Monday 2025-06-02 00:00 through Sunday 2025-06-08 23:59:59 UTC."""
    return (
        datetime(2025, 6, 2, 0, 0, tzinfo=timezone.utc),
        datetime(2025, 6, 8, 23, 59, 59, tzinfo=timezone.utc),
    )


def build_vevent(**props: str) -> str:
    """Build one VEVENT block; keyword names map to property names (RECURRENCE_ID -> RECURRENCE-ID).

    A value may already contain parameters, e.g. DTSTART=";VALUE=DATE:20250602".
    """
    lines = ["BEGIN:VEVENT"]
    for name, value in props.items():
        prop = name.replace("_", "-").upper()
        separator = "" if value.startswith(";") else ":"
        lines.append(f"{prop}{separator}{value}")
    lines.append("END:VEVENT")
    return "\r\n".join(lines)


def build_calendar(*vevents: str) -> str:
    """Wrap VEVENT blocks in a VCALENDAR envelope."""
    return "\r\n".join(
        ["BEGIN:VCALENDAR", "VERSION:2.0", "PRODID:-//calendar-resolver tests//EN", *vevents, "END:VCALENDAR"]
    ) + "\r\n"


@pytest.fixture
def vevent() -> Callable[..., str]:
    return build_vevent


@pytest.fixture
def calendar() -> Callable[..., str]:
    return build_calendar
