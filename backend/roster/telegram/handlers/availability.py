"""
/availability: list, add and withdraw the dates a user can do duty.
"""
import logging
from typing import List, Optional

from roster.models.enums import Ict
from roster.notifier.emit import availability_notifications, conflict_notifications
from roster.schemas.availability import AvailabilityDetails
from roster.schemas.user import UserSchema
from roster.services.scheduling import (
    add_availability,
    get_availability_details,
    list_user_availability,
    local_today,
    withdraw_availability,
)
from roster.telegram.callbacks import (
    Back,
    CallbackAction,
    CallbackActions,
    Confirm,
    Done,
    Next,
    Prev,
    Select,
    generate_token,
)
from roster.telegram.engine import Access, DialogueEngine, HandlerContext, MessageEvent
from roster.telegram.states import (
    AvailabilityAddDates,
    AvailabilityAddType,
    AvailabilityDeleteConfirm,
    AvailabilitySelect,
    AvailabilityView,
    Start,
    State,
)
from roster.telegram.utils import format_date, page_footer, parse_dates, truncate

logger = logging.getLogger(__name__)


class Add(CallbackAction):
    tag = "add"


class Delete(CallbackAction):
    tag = "del"


class ChooseIct(CallbackAction):
    tag = "ict"
    ict_type: Ict


VIEW_ACTIONS = CallbackActions("avail", Add, Delete, Done)
TYPE_ACTIONS = CallbackActions("avail_type", ChooseIct, Back)
SELECT_ACTIONS = CallbackActions("avail_sel", Select, Prev, Next, Back)
CONFIRM_ACTIONS = CallbackActions("avail_del", Confirm, Back)


def describe(entry: AvailabilityDetails, remarks_limit: int = 20) -> str:
    text = f"{format_date(entry.avail)} {entry.ict_type.value}"
    if entry.remarks:
        text += f", {truncate(entry.remarks, remarks_limit)}"
    if entry.planned:
        text += " [PLANNED]"
    return text


async def _show_view(
    ctx: HandlerContext,
    user: UserSchema,
    msg_id: Optional[int],
    notice: str = "",
) -> AvailabilityView:
    entries = await ctx.store(list_user_availability, user.id, local_today())
    lines = [notice, ""] if notice else []
    if entries:
        lines.append(f"Upcoming availability for {user.ops_name}:")
        lines.extend(f"{i}. {describe(entry)}" for i, entry in enumerate(entries, start=1))
    else:
        lines.append(f"{user.ops_name} has no upcoming availability.")

    token = generate_token()
    row = [("ADD", VIEW_ACTIONS.encode(Add(), token))]
    if entries:
        row.append(("DELETE", VIEW_ACTIONS.encode(Delete(), token)))
    row.append(("DONE", VIEW_ACTIONS.encode(Done(), token)))

    text = "\n".join(lines)
    if msg_id is None:
        msg_id = await ctx.send(text, [row])
    else:
        msg_id = await ctx.show(msg_id, text, [row])
    return AvailabilityView(msg_id=msg_id, token=token, user=user)


async def _show_select(ctx: HandlerContext, state, start: int, notice: str = "") -> State:
    entries = await ctx.store(list_user_availability, state.user.id, local_today())
    if not entries:
        return await _show_view(ctx, state.user, state.msg_id, notice or "Nothing left to delete.")

    last_start = ((len(entries) - 1) // ctx.page_size) * ctx.page_size
    start = max(0, min(start, last_start))
    token = generate_token()

    buttons = [
        [(describe(entry, remarks_limit=8), SELECT_ACTIONS.encode(Select(id=entry.id), token))]
        for entry in entries[start:start + ctx.page_size]
    ]
    nav = []
    if start > 0:
        nav.append(("PREV", SELECT_ACTIONS.encode(Prev(), token)))
    if start + ctx.page_size < len(entries):
        nav.append(("NEXT", SELECT_ACTIONS.encode(Next(), token)))
    if nav:
        buttons.append(nav)
    buttons.append([("BACK", SELECT_ACTIONS.encode(Back(), token))])

    lines = [notice, ""] if notice else []
    lines.append("Select the date to withdraw:")
    lines.append(page_footer(start, ctx.page_size, len(entries)))
    msg_id = await ctx.show(state.msg_id, "\n".join(lines).rstrip(), buttons)
    return AvailabilitySelect(msg_id=msg_id, token=token, user=state.user, start=start)


async def availability_command(ctx: HandlerContext, state: State, args: str):
    return await _show_view(ctx, ctx.user, None)


async def view_pressed(ctx: HandlerContext, state: AvailabilityView, action: CallbackAction):
    if isinstance(action, Done):
        await ctx.show(state.msg_id, "Availability updated.")
        return Start()
    if isinstance(action, Delete):
        return await _show_select(ctx, state, 0)

    token = generate_token()
    buttons = [
        [(ict.value, TYPE_ACTIONS.encode(ChooseIct(ict_type=ict), token)) for ict in Ict],
        [("BACK", TYPE_ACTIONS.encode(Back(), token))],
    ]
    msg_id = await ctx.show(state.msg_id, "Select the type of duty you are available for:", buttons)
    return AvailabilityAddType(msg_id=msg_id, token=token, user=state.user)


async def type_pressed(ctx: HandlerContext, state: AvailabilityAddType, action: CallbackAction):
    if isinstance(action, Back):
        return await _show_view(ctx, state.user, state.msg_id)

    await ctx.show(
        state.msg_id,
        f"Type: {action.ict_type.value}\n"
        "Reply with the dates you are available, separated by commas (e.g. 2026-11-02, 2026-11-05).\n"
        "Add remarks after a colon, e.g. 2026-11-02: after 1400.",
    )
    return AvailabilityAddDates(user=state.user, ict_type=action.ict_type)


async def dates_received(ctx: HandlerContext, state: AvailabilityAddDates, event: MessageEvent):
    dates_text, _, remarks = event.text.partition(":")
    remarks = " ".join(remarks.split()) or None
    dates, invalid = parse_dates(dates_text)

    today = local_today()
    past = [day for day in dates if day < today]
    dates = [day for day in dates if day >= today]
    problems: List[str] = []
    if invalid:
        problems.append(f"Could not read: {', '.join(invalid)}")
    if past:
        problems.append(f"Dates in the past: {', '.join(format_date(day) for day in past)}")
    if not dates:
        problems.append("Please reply with at least one upcoming date, or type /cancel to abort.")
        await ctx.reply("\n".join(problems))
        return None

    results = await ctx.store(add_availability, state.user.id, dates, state.ict_type, truncate(remarks, 250) or None)
    added = [day for day, is_new in results if is_new]
    existing = [day for day, is_new in results if not is_new]

    lines = []
    if added:
        lines.append(f"Added {state.ict_type.value} availability for: {', '.join(format_date(d) for d in added)}")
    if existing:
        lines.append(f"Already available on: {', '.join(format_date(d) for d in existing)}")
    lines.extend(problems)
    await ctx.reply("\n".join(lines))

    if added:
        await availability_notifications(
            ctx.db,
            ctx.gateway,
            f"{state.user.ops_name} is available for {state.ict_type.value} on "
            f"{', '.join(format_date(d) for d in added)}",
            originator_id=ctx.user_id,
        )
    return Start()


async def select_pressed(ctx: HandlerContext, state: AvailabilitySelect, action: CallbackAction):
    if isinstance(action, Back):
        return await _show_view(ctx, state.user, state.msg_id)
    if isinstance(action, Prev):
        return await _show_select(ctx, state, state.start - ctx.page_size)
    if isinstance(action, Next):
        return await _show_select(ctx, state, state.start + ctx.page_size)

    entry = await ctx.store(get_availability_details, action.id)
    if entry is None or entry.user_id != state.user.id or not entry.is_valid:
        return await _show_select(ctx, state, state.start, "That date is no longer available.")

    token = generate_token()
    text = f"Withdraw availability for {describe(entry, remarks_limit=50)}?"
    if entry.planned:
        text += "\nYou are planned for duty on this date. The planners will be informed."
    buttons = [[
        ("WITHDRAW", CONFIRM_ACTIONS.encode(Confirm(), token)),
        ("BACK", CONFIRM_ACTIONS.encode(Back(), token)),
    ]]
    msg_id = await ctx.show(state.msg_id, text, buttons)
    return AvailabilityDeleteConfirm(
        msg_id=msg_id,
        token=token,
        user=state.user,
        availability=entry,
        start=state.start,
    )


async def delete_confirmed(ctx: HandlerContext, state: AvailabilityDeleteConfirm, action: CallbackAction):
    if isinstance(action, Back):
        return await _show_select(ctx, state, state.start)

    withdrawn = await ctx.store(withdraw_availability, state.availability.id)
    if withdrawn is None:
        return await _show_view(ctx, state.user, state.msg_id, "That date was already withdrawn.")

    if withdrawn.planned:
        await conflict_notifications(
            ctx.db,
            ctx.gateway,
            f"{withdrawn.ops_name} has withdrawn availability for {withdrawn.ict_type.value} on "
            f"{format_date(withdrawn.avail)} but is still planned. Use /plan to review.",
            originator_id=ctx.user_id,
        )
    return await _show_view(ctx, state.user, state.msg_id, f"Withdrew {format_date(withdrawn.avail)}.")


def register(engine: DialogueEngine) -> None:
    engine.command(
        "availability",
        availability_command,
        access=Access.REGISTERED,
        private=True,
        description="View, add or withdraw your availability",
    )
    engine.on_button(AvailabilityView, VIEW_ACTIONS, view_pressed)
    engine.on_button(AvailabilityAddType, TYPE_ACTIONS, type_pressed)
    engine.on_message(AvailabilityAddDates, dates_received)
    engine.on_button(AvailabilitySelect, SELECT_ACTIONS, select_pressed)
    engine.on_button(AvailabilityDeleteConfirm, CONFIRM_ACTIONS, delete_confirmed)
