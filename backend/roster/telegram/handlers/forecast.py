"""/forecast: who is available for a role over the coming weeks."""
import logging
from datetime import date, datetime, timedelta
from itertools import groupby
from typing import List
from zoneinfo import ZoneInfo

from roster.core.config import settings
from roster.models.enums import RoleType, UsrType
from roster.schemas.availability import AvailabilityDetails
from roster.services.scheduling import last_availability_date, list_availability_for_role_and_dates, local_today
from roster.telegram.callbacks import CallbackAction, CallbackActions, Done, generate_token
from roster.telegram.engine import Access, DialogueEngine, HandlerContext
from roster.telegram.states import ForecastView, Start, State
from roster.telegram.utils import add_months, truncate

logger = logging.getLogger(__name__)

# Telegram rejects longer messages
MAX_MESSAGE_CHARS = 4096


class ViewRole(CallbackAction):
    tag = "role"
    role_type: RoleType


class NextWeek(CallbackAction):
    tag = "week"


class Months(CallbackAction):
    tag = "months"
    count: int


class ViewAll(CallbackAction):
    tag = "all"


FORECAST_ACTIONS = CallbackActions("forecast", ViewRole, NextWeek, Months, ViewAll, Done)


def _entry_line(entry: AvailabilityDetails) -> str:
    line = f"- {entry.ops_name} {entry.ict_type.value}"
    if entry.planned:
        line += " (PLANNED)"
    if not entry.is_valid:
        line += " (UNAVAIL)"
    if entry.usr_type is UsrType.NS:
        line += " (NS)"
    if entry.saf100:
        line += " SAF100 ISSUED"
    elif entry.planned and entry.usr_type is UsrType.NS:
        line += " PENDING SAF100"
    if entry.remarks:
        line += f": {truncate(entry.remarks, 15)}"
    return line


def render_forecast(entries: List[AvailabilityDetails], role_type: RoleType, start: date, end: date, now: datetime) -> str:
    heading = "Availability forecast" if entries else "No availability entries"
    lines = [f"{heading} for role {role_type.value} from {start:%b-%d-%Y} to {end:%b-%d-%Y}", ""]

    for (year, month), in_month in groupby(entries, key=lambda e: (e.avail.year, e.avail.month)):
        lines.append(f"{date(year, month, 1):%B %Y}")
        for day, on_day in groupby(in_month, key=lambda e: e.avail):
            lines.append(f"{day:%b %d}")
            lines.extend(_entry_line(entry) for entry in on_day)
            lines.append("")
        lines.append("")

    footer = f"Updated: {now:%d%m %H%M.%S}"
    text = "\n".join(lines).rstrip()
    if len(text) + len(footer) + 2 > MAX_MESSAGE_CHARS:
        cut = MAX_MESSAGE_CHARS - len(footer) - 32
        text = text[:cut].rsplit("\n", 1)[0] + "\n... (more not shown)"
    return f"{text}\n\n{footer}"


def _buttons(role_type: RoleType, token: str):
    return [
        [
            (f"VIEW {role.value}", FORECAST_ACTIONS.encode(ViewRole(role_type=role), token))
            for role in RoleType
            if role is not role_type
        ],
        [
            ("NEXT WEEK", FORECAST_ACTIONS.encode(NextWeek(), token)),
            ("1 MONTH", FORECAST_ACTIONS.encode(Months(count=1), token)),
        ],
        [
            ("2 MONTHS", FORECAST_ACTIONS.encode(Months(count=2), token)),
            ("VIEW ALL", FORECAST_ACTIONS.encode(ViewAll(), token)),
        ],
        [("DONE", FORECAST_ACTIONS.encode(Done(), token))],
    ]


async def _show(ctx: HandlerContext, msg_id, role_type: RoleType, start: date, end: date) -> ForecastView:
    entries = await ctx.store(list_availability_for_role_and_dates, role_type, start, end)
    token = generate_token()
    text = render_forecast(entries, role_type, start, end, datetime.now(ZoneInfo(settings.TIMEZONE)))
    buttons = _buttons(role_type, token)
    if msg_id is None:
        msg_id = await ctx.send(text, buttons)
    else:
        msg_id = await ctx.show(msg_id, text, buttons)
    return ForecastView(msg_id=msg_id, token=token, role_type=role_type, start=start, end=end)


async def forecast_command(ctx: HandlerContext, state: State, args: str):
    start = local_today()
    return await _show(ctx, None, ctx.user.role_type, start, start + timedelta(weeks=1))


async def forecast_pressed(ctx: HandlerContext, state: ForecastView, action: CallbackAction):
    if isinstance(action, Done):
        await ctx.gateway.remove_buttons(ctx.chat_id, state.msg_id)
        return Start()

    role_type, start, end = state.role_type, state.start, state.end
    today = local_today()
    if isinstance(action, ViewRole):
        role_type = action.role_type
    elif isinstance(action, NextWeek):
        start, end = start + timedelta(weeks=1), end + timedelta(weeks=1)
    elif isinstance(action, Months):
        start, end = today, add_months(today, action.count)
    elif isinstance(action, ViewAll):
        last = await ctx.store(last_availability_date, role_type, today)
        start, end = today, max(last or end, today)
    return await _show(ctx, state.msg_id, role_type, start, end)


def register(engine: DialogueEngine) -> None:
    engine.command(
        "forecast",
        forecast_command,
        access=Access.REGISTERED,
        description="See who is available over the coming weeks",
    )
    engine.on_button(ForecastView, FORECAST_ACTIONS, forecast_pressed)
