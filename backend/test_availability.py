"""/availability and /upcoming."""
import asyncio
from datetime import timedelta

from roster.models.availability import Availability
from roster.models.enums import Ict, UsrType
from roster.services.notifications import update_notification_settings
from roster.services.scheduling import local_today
from roster.telegram.states import AvailabilityAddDates, AvailabilityView, Start
from roster.telegram.utils import format_date


def test_add_dates_with_remarks(db, chat, gateway, make_user):
    user = make_user(2, "ALPHA")
    update_notification_settings(db, 2, notif_availability=True)
    update_notification_settings(db, -100, notif_availability=True)
    today = local_today()
    first, second = today + timedelta(days=2), today + timedelta(days=9)
    yesterday = today - timedelta(days=1)
    member = chat(2)

    async def scenario():
        await member.say("/availability")
        assert isinstance(member.state, AvailabilityView)
        assert gateway.labels(2) == ["ADD", "DONE"]
        await member.press("ADD")
        await member.press("SIMS")
        assert isinstance(member.state, AvailabilityAddDates)
        await member.say(f"{first.isoformat()}, {yesterday.isoformat()}, soon, {second.isoformat()}: after  1400")

    asyncio.run(scenario())

    assert isinstance(member.state, Start)
    reply = gateway.texts(2)[-1]
    assert reply.splitlines() == [
        f"Added SIMS availability for: {format_date(first)}, {format_date(second)}",
        "Could not read: soon",
        f"Dates in the past: {format_date(yesterday)}",
    ]
    assert gateway.texts(-100) == [
        f"ALPHA is available for SIMS on {format_date(first)}, {format_date(second)}"
    ]

    db.expire_all()
    rows = db.query(Availability).filter(Availability.user_id == user.id).order_by(Availability.avail).all()
    assert [(row.avail, row.ict_type, row.remarks) for row in rows] == [
        (first, Ict.SIMS, "after 1400"),
        (second, Ict.SIMS, "after 1400"),
    ]


def test_only_past_dates_asks_again(chat, gateway, make_user):
    make_user(2, "ALPHA")
    member = chat(2)

    async def scenario():
        await member.say("/availability")
        await member.press("ADD")
        await member.press("LIVE")
        await member.say((local_today() - timedelta(days=3)).isoformat())

    asyncio.run(scenario())
    assert isinstance(member.state, AvailabilityAddDates)
    assert gateway.texts(2)[-1].endswith("Please reply with at least one upcoming date, or type /cancel to abort.")


def test_withdrawing_planned_date_raises_conflict(db, chat, gateway, make_user, make_availability):
    user = make_user(2, "ALPHA")
    planned = make_availability(user, 4, planned=True)
    make_availability(user, 6)
    update_notification_settings(db, -100, notif_conflict=True)
    member = chat(2)
    label = f"{format_date(planned.avail)} LIVE [PLANNED]"

    async def scenario():
        await member.say("/availability")
        await member.press("DELETE")
        await member.press(label)
        assert "You are planned for duty on this date." in gateway.screen(2).text
        await member.press("WITHDRAW")

    asyncio.run(scenario())

    assert isinstance(member.state, AvailabilityView)
    assert gateway.screen(2).text.startswith(f"Withdrew {format_date(planned.avail)}.")
    assert gateway.texts(-100) == [
        f"ALPHA has withdrawn availability for LIVE on {format_date(planned.avail)} "
        "but is still planned. Use /plan to review."
    ]
    db.expire_all()
    assert db.get(Availability, planned.id).is_valid is False


def test_withdrawn_elsewhere_while_selecting(db, chat, gateway, make_user, make_availability):
    user = make_user(2, "ALPHA")
    entry = make_availability(user, 4)
    make_availability(user, 6)
    member = chat(2)

    async def scenario():
        await member.say("/availability")
        await member.press("DELETE")
        data = gateway.button_data(2, format_date(entry.avail))
        db.get(Availability, entry.id).is_valid = False
        db.commit()
        await member.press_data(data)

    asyncio.run(scenario())
    assert gateway.screen(2).text.startswith("That date is no longer available.")


def test_upcoming_lists_planned_duties(chat, gateway, make_user, make_availability):
    user = make_user(2, "ALPHA", usr_type=UsrType.NS)
    duty = make_availability(user, 3, planned=True, remarks="bring kit")
    make_availability(user, 5)

    asyncio.run(chat(2).say("/upcoming"))
    assert gateway.texts(2) == [
        f"Your upcoming planned duties:\n{format_date(duty.avail)} LIVE, bring kit (SAF100 pending)"
    ]
