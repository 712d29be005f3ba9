"""/forecast: availability by role over a date range."""
import asyncio
from datetime import date, datetime, timedelta

from roster.models.enums import Ict, RoleType, UsrType
from roster.schemas.availability import AvailabilityDetails
from roster.services.scheduling import local_today
from roster.telegram.handlers.forecast import MAX_MESSAGE_CHARS, render_forecast
from roster.telegram.states import ForecastView, Start
from roster.telegram.utils import add_months


def _setup(make_user, make_availability):
    alpha = make_user(1, "ALPHA")
    make_availability(alpha, 1, remarks="after 1400 only please")
    make_availability(make_user(2, "BRAVO"), 2, planned=True)
    make_availability(make_user(3, "CHARLIE", role_type=RoleType.ARO), 2, ict_type=Ict.SIMS)
    make_availability(make_user(4, "DELTA", usr_type=UsrType.NS), 3, planned=True)
    make_availability(make_user(5, "ECHO"), 40)


def test_week_forecast_for_own_role_in_group(chat, gateway, make_user, make_availability):
    _setup(make_user, make_availability)
    group = chat(-500, user_id=1, private=False)

    asyncio.run(group.say("/forecast"))

    assert isinstance(group.state, ForecastView)
    assert group.state.role_type is RoleType.PILOT
    assert (group.state.start, group.state.end) == (local_today(), local_today() + timedelta(weeks=1))
    text = gateway.screen(-500).text
    assert text.startswith(f"Availability forecast for role PILOT from {local_today():%b-%d-%Y}")
    assert "- ALPHA LIVE: after 1400 only..." in text
    assert "- BRAVO LIVE (PLANNED)" in text
    assert "- DELTA LIVE (PLANNED) (NS) PENDING SAF100" in text
    assert "CHARLIE" not in text
    assert "ECHO" not in text
    assert gateway.labels(-500) == ["VIEW ARO", "NEXT WEEK", "1 MONTH", "2 MONTHS", "VIEW ALL", "DONE"]


def test_switch_role_and_ranges(chat, gateway, make_user, make_availability):
    _setup(make_user, make_availability)
    user = chat(1)
    today = local_today()

    async def scenario():
        await user.say("/forecast")
        await user.press("VIEW ARO")
        assert user.state.role_type is RoleType.ARO
        assert "- CHARLIE SIMS" in gateway.screen(1).text
        assert "VIEW PILOT" in gateway.labels(1)

        await user.press("VIEW PILOT")
        await user.press("NEXT WEEK")
        assert (user.state.start, user.state.end) == (today + timedelta(weeks=1), today + timedelta(weeks=2))
        assert gateway.screen(1).text.startswith("No availability entries for role PILOT")

        await user.press("2 MONTHS")
        assert (user.state.start, user.state.end) == (today, add_months(today, 2))
        assert "ECHO" in gateway.screen(1).text

        await user.press("1 MONTH")
        assert user.state.end == add_months(today, 1)

        await user.press("VIEW ALL")
        assert user.state.end == today + timedelta(days=40)

        await user.press("DONE")

    asyncio.run(scenario())
    assert isinstance(user.state, Start)
    assert (1, gateway.latest[1]) in gateway.removed


def test_forecast_needs_registration(chat, gateway):
    asyncio.run(chat(77).say("/forecast"))
    assert gateway.texts(77) == ["You are not registered. Use /register in a private chat with the bot."]


def test_add_months_clamps_day():
    assert add_months(date(2026, 1, 31), 1) == date(2026, 2, 28)
    assert add_months(date(2028, 1, 31), 1) == date(2028, 2, 29)
    assert add_months(date(2026, 12, 15), 2) == date(2027, 2, 15)


def test_long_forecast_fits_one_message():
    start = date(2026, 1, 1)
    entries = [
        AvailabilityDetails(
            id=i,
            user_id=i,
            ops_name=f"USER{i:03d}",
            usr_type=UsrType.ACTIVE,
            avail=start + timedelta(days=i // 4),
            ict_type=Ict.LIVE,
        )
        for i in range(400)
    ]

    text = render_forecast(entries, RoleType.PILOT, start, start + timedelta(days=100), datetime(2026, 1, 1, 9, 30))

    assert len(text) <= MAX_MESSAGE_CHARS
    assert "... (more not shown)" in text
    assert text.endswith("Updated: 0101 0930.00")
    assert text.count("January 2026") == 1
