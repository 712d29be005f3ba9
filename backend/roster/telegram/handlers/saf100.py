"""/saf100: track which NS duties have had their SAF100 issued."""
import logging
from typing import Optional

from roster.core.audit import AuditLog
from roster.notifier.emit import plan_notifications
from roster.schemas.availability import AvailabilityDetails
from roster.services.scheduling import list_ns_availability, local_today, set_saf100_issued
from roster.services.users import get_user
from roster.telegram.callbacks import (
    Back,
    Cancel,
    CallbackAction,
    CallbackActions,
    Confirm,
    Done,
    Next,
    Prev,
    Select,
    generate_token,
)
from roster.telegram.engine import Access, DialogueEngine, HandlerContext
from roster.telegram.states import Saf100Confirm, Saf100Select, Saf100View, Start, State
from roster.telegram.utils import format_date, page_footer, truncate

logger = logging.getLogger(__name__)


class SeeAvail(CallbackAction):
    tag = "avail"


class SeePlanned(CallbackAction):
    tag = "planned"


SELECT_ACTIONS = CallbackActions("saf_sel", SeeAvail, SeePlanned, Cancel)
VIEW_ACTIONS = CallbackActions("saf_view", Select, Prev, Next, Done)
CONFIRM_ACTIONS = CallbackActions("saf_ok", Confirm, Back)


def saf100_status(entry: AvailabilityDetails) -> str:
    if entry.saf100:
        status = "SAF100 Issued"
    elif entry.planned:
        status = "SAF100 Pending"
    else:
        status = "(NOT PLANNED)"
    if not entry.is_valid:
        status += " (NOT AVAIL)"
    return status


def awaiting_saf100(entry: AvailabilityDetails) -> bool:
    return entry.is_valid and not entry.saf100


def render_view(entries, planned_only: bool, start: int, page_size: int, token: str, notice: str = ""):
    lines = [notice, ""] if notice else []
    kind = "planned availability" if planned_only else "availability"
    if not entries:
        lines.append(f"No upcoming NS {kind} found.")
        return "\n".join(lines), [[("DONE", VIEW_ACTIONS.encode(Done(), token))]]

    page = entries[start:start + page_size]
    lines.append(f"Showing NS {kind} {start + 1} to {start + len(page)} out of {len(entries)}:")
    buttons = []
    for offset, entry in enumerate(page, start=start + 1):
        lines.append(f"{offset}. {entry.ops_name} {format_date(entry.avail)} {entry.ict_type.value}: {saf100_status(entry)}")
        if awaiting_saf100(entry):
            label = f"{entry.ops_name} {entry.avail.strftime('%b-%d')}"
            buttons.append([(label, VIEW_ACTIONS.encode(Select(id=entry.id), token))])
    footer = page_footer(start, page_size, len(entries))
    if footer:
        lines.append(footer)

    nav = []
    if start > 0:
        nav.append(("PREV", VIEW_ACTIONS.encode(Prev(), token)))
    if start + page_size < len(entries):
        nav.append(("NEXT", VIEW_ACTIONS.encode(Next(), token)))
    if nav:
        buttons.append(nav)
    buttons.append([("DONE", VIEW_ACTIONS.encode(Done(), token))])
    return "\n".join(lines), buttons


async def _show_view(ctx: HandlerContext, msg_id: int, planned_only: bool, start: int, notice: str = "") -> Saf100View:
    entries = await ctx.store(list_ns_availability, local_today(), planned_only)
    if entries:
        last_start = ((len(entries) - 1) // ctx.page_size) * ctx.page_size
        start = max(0, min(start, last_start))
    else:
        start = 0

    token = generate_token()
    text, buttons = render_view(entries, planned_only, start, ctx.page_size, token, notice)
    msg_id = await ctx.show(msg_id, text, buttons)
    return Saf100View(msg_id=msg_id, token=token, planned_only=planned_only, start=start)


async def saf100_command(ctx: HandlerContext, state: State, args: str):
    token = generate_token()
    buttons = [
        [
            ("SEE AVAIL", SELECT_ACTIONS.encode(SeeAvail(), token)),
            ("SEE PLANNED", SELECT_ACTIONS.encode(SeePlanned(), token)),
        ],
        [("CANCEL", SELECT_ACTIONS.encode(Cancel(), token))],
    ]
    msg_id = await ctx.send("Please choose an option:", buttons)
    return Saf100Select(msg_id=msg_id, token=token)


async def select_pressed(ctx: HandlerContext, state: Saf100Select, action: CallbackAction):
    if isinstance(action, Cancel):
        await ctx.show(state.msg_id, "Operation cancelled.")
        return Start()
    return await _show_view(ctx, state.msg_id, isinstance(action, SeePlanned), 0)


async def view_pressed(ctx: HandlerContext, state: Saf100View, action: CallbackAction):
    if isinstance(action, Done):
        await ctx.show(state.msg_id, "Operation completed.")
        return Start()
    if isinstance(action, Prev):
        return await _show_view(ctx, state.msg_id, state.planned_only, state.start - ctx.page_size)
    if isinstance(action, Next):
        return await _show_view(ctx, state.msg_id, state.planned_only, state.start + ctx.page_size)

    entries = await ctx.store(list_ns_availability, local_today(), state.planned_only)
    entry: Optional[AvailabilityDetails] = next((e for e in entries if e.id == action.id), None)
    if entry is None or not awaiting_saf100(entry):
        return await _show_view(
            ctx, state.msg_id, state.planned_only, state.start, "That entry is no longer awaiting SAF100."
        )

    token = generate_token()
    text = (
        "Selected Availability:\n"
        f"Ops name: {entry.ops_name}\n"
        f"Date: {format_date(entry.avail)}\n"
        f"Type: {entry.ict_type.value}\n"
        f"Remarks: {truncate(entry.remarks, 50) or 'None'}\n"
        f"Status: {saf100_status(entry)}\n\n"
        "Confirm issued SAF100?"
    )
    buttons = [[
        ("YES", CONFIRM_ACTIONS.encode(Confirm(), token)),
        ("NO", CONFIRM_ACTIONS.encode(Back(), token)),
    ]]
    msg_id = await ctx.show(state.msg_id, text, buttons)
    return Saf100Confirm(
        msg_id=msg_id,
        token=token,
        availability=entry,
        planned_only=state.planned_only,
        start=state.start,
    )


async def confirm_pressed(ctx: HandlerContext, state: Saf100Confirm, action: CallbackAction):
    if isinstance(action, Back):
        return await _show_view(ctx, state.msg_id, state.planned_only, state.start)

    details = await ctx.store(set_saf100_issued, state.availability.id)
    if details is None:
        return await _show_view(
            ctx, state.msg_id, state.planned_only, state.start, "That entry is no longer awaiting SAF100."
        )

    day = format_date(details.avail)
    AuditLog.log_saf100(ctx.user_id, details.id, details.ops_name, details.avail.isoformat())
    issuer = ctx.user.ops_name if ctx.user else str(ctx.user_id)
    await plan_notifications(
        ctx.db,
        ctx.gateway,
        f"{issuer} has confirmed SAF100 issued for {details.ops_name} on {day}",
        originator_id=ctx.user_id,
    )

    notice = f"SAF100 confirmed issued for {details.ops_name} on {day}."
    owner = await ctx.store(get_user, details.user_id)
    delivered = None
    if owner is not None:
        delivered = await ctx.reply(
            f"SAF100 for {day} sent to NS branch for processing.\nPlease look out for it.",
            chat_id=owner.tele_id,
        )
    if delivered is None:
        logger.warning(f"[SAF100] Could not notify {details.ops_name} about availability #{details.id}")
        notice += f"\nWarning: {details.ops_name} could not be notified."
    return await _show_view(ctx, state.msg_id, state.planned_only, state.start, notice)


def register(engine: DialogueEngine) -> None:
    engine.command(
        "saf100",
        saf100_command,
        access=Access.ADMIN,
        private=True,
        description="Confirm SAF100 issued for NS duty",
    )
    engine.on_button(Saf100Select, SELECT_ACTIONS, select_pressed)
    engine.on_button(Saf100View, VIEW_ACTIONS, view_pressed)
    engine.on_button(Saf100Confirm, CONFIRM_ACTIONS, confirm_pressed)
