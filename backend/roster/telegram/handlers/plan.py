"""
/plan: mark availability as planned duty.

The planner toggles entries across pages; toggles are staged in the
screen's ``DiffOverlay`` and only written when DONE is pressed, as one
transaction. Every press re-reads the entries from the database so the
screen follows edits made by other planners and users.
"""
import logging
from datetime import date
from typing import Optional, Tuple

from roster.core.audit import AuditLog
from roster.models.enums import RoleType, UsrType
from roster.notifier.emit import plan_notifications
from roster.schemas.availability import AvailabilityDetails
from roster.schemas.user import UserSchema
from roster.services.scheduling import (
    list_planning_by_date,
    list_planning_by_user,
    local_today,
    toggle_planned_status_multiple,
)
from roster.services.users import get_user_by_ops_name
from roster.telegram.callbacks import Cancel, CallbackAction, CallbackActions, Done, Next, Prev, generate_token
from roster.telegram.engine import Access, DialogueEngine, HandlerContext, MessageEvent
from roster.telegram.overlay import DiffOverlay
from roster.telegram.states import PlanSelect, PlanView, Start, State
from roster.telegram.utils import format_date, page_footer, parse_date, truncate

logger = logging.getLogger(__name__)


class Toggle(CallbackAction):
    tag = "t"
    id: int


class ViewRole(CallbackAction):
    tag = "role"
    role_type: RoleType


PLAN_ACTIONS = CallbackActions("plan", Toggle, Prev, Next, ViewRole, Done, Cancel)


def button_label(overlay: DiffOverlay, entry: AvailabilityDetails) -> str:
    if overlay.effective(entry):
        return "UNPLAN" if entry.is_valid else "UNPLAN (UNAVAIL)"
    return "PLAN"


def _entry_line(overlay: DiffOverlay, entry: AvailabilityDetails, by_user: bool) -> str:
    subject = f"{format_date(entry.avail)} {entry.ict_type.value}" if by_user else f"{entry.ops_name} {entry.ict_type.value}"
    if entry.remarks:
        subject += f", {truncate(entry.remarks, 15)}"
    status = "PLANNED" if overlay.effective(entry) else "available"
    if not entry.is_valid:
        status += ", withdrawn"
    marker = "*" if entry.id in overlay.pending else ""
    return f"{subject} [{status}]{marker}"


def render_plan(state: PlanView, page_size: int) -> Tuple[str, list]:
    overlay = state.overlay
    token = state.token
    by_user = state.user is not None

    if by_user:
        title = f"Planning for {state.user.ops_name}"
    else:
        title = f"Planning for {format_date(state.day)} ({state.role_type.value})"
    lines = [title, ""]

    page = overlay.page(state.start, page_size)
    buttons = []
    if not page:
        lines.append("No availability to plan." if by_user else "No users available on this date.")
    for offset, entry in enumerate(page, start=state.start + 1):
        lines.append(f"{offset}. {_entry_line(overlay, entry, by_user)}")
        target = format_date(entry.avail) if by_user else entry.ops_name
        buttons.append([(f"{button_label(overlay, entry)} {target}", PLAN_ACTIONS.encode(Toggle(id=entry.id), token))])

    if overlay.pending:
        lines.append(f"\n{len(overlay.pending)} unsaved change(s), marked *. Press DONE to save.")
    footer = page_footer(state.start, page_size, len(overlay.snapshot))
    if footer:
        lines.append(footer)

    nav = []
    if state.start > 0:
        nav.append(("PREV", PLAN_ACTIONS.encode(Prev(), token)))
    if state.start + page_size < len(overlay.snapshot):
        nav.append(("NEXT", PLAN_ACTIONS.encode(Next(), token)))
    if nav:
        buttons.append(nav)
    if not by_user:
        buttons.append([
            (f"VIEW {role.value}", PLAN_ACTIONS.encode(ViewRole(role_type=role), token))
            for role in RoleType
            if role is not state.role_type
        ])
    buttons.append([
        ("DONE", PLAN_ACTIONS.encode(Done(), token)),
        ("CANCEL", PLAN_ACTIONS.encode(Cancel(), token)),
    ])
    return "\n".join(lines), buttons


async def fetch_snapshot(ctx: HandlerContext, user: Optional[UserSchema], day: Optional[date], role_type: RoleType):
    if user is not None:
        return await ctx.store(list_planning_by_user, user.id, local_today())
    return await ctx.store(list_planning_by_date, day, role_type)


async def _render(ctx: HandlerContext, state: PlanView, new: bool = False) -> PlanView:
    """Show ``state`` with a fresh token; returns the state to store."""
    state = state.model_copy(update={"token": generate_token()})
    text, buttons = render_plan(state, ctx.page_size)
    if new:
        msg_id = await ctx.send(text, buttons)
    else:
        msg_id = await ctx.show(state.msg_id, text, buttons)
    return state.model_copy(update={"msg_id": msg_id})


async def _open(ctx: HandlerContext, target: str):
    """Resolve an ops name or a date and open the planning screen for it.

    An ops name wins over a date, so a six-digit ops name stays reachable.
    """
    found = await ctx.store(get_user_by_ops_name, target)
    user = UserSchema.model_validate(found) if found else None
    day = parse_date(target) if user is None else None
    if user is None and day is None:
        await ctx.reply(f"No user or date matches '{target}'. Type an ops name or a date (YYYY-MM-DD):")
        return None

    role_type = ctx.user.role_type if ctx.user else RoleType.PILOT
    snapshot = await fetch_snapshot(ctx, user, day, role_type)
    state = PlanView(
        msg_id=0,
        token="",
        user=user,
        day=day,
        role_type=role_type,
        start=0,
        overlay=DiffOverlay.over(snapshot),
    )
    return await _render(ctx, state, new=True)


async def plan_command(ctx: HandlerContext, state: State, args: str):
    if args:
        return await _open(ctx, args) or PlanSelect()
    await ctx.reply("Type the ops name of the user, or a date (YYYY-MM-DD), to plan:")
    return PlanSelect()


async def target_received(ctx: HandlerContext, state: PlanSelect, event: MessageEvent):
    return await _open(ctx, event.text.strip())


def format_change(entry: AvailabilityDetails) -> str:
    name = f"`{entry.ops_name}`"
    if entry.usr_type is UsrType.NS:
        name += " (NS)"
    verb = "has been planned" if entry.planned else "is no longer planned"
    return f"{name} {verb} for {entry.ict_type.value} on {format_date(entry.avail)}"


async def _commit(ctx: HandlerContext, state: PlanView, overlay: DiffOverlay):
    if not overlay.changes():
        await ctx.show(state.msg_id, "No changes were made.")
        return Start()

    def commit_staged(db):
        return overlay.commit(lambda ids: toggle_planned_status_multiple(db, ids))

    results, _ = await ctx.store(commit_staged)
    for entry in results:
        AuditLog.log_plan_change(ctx.user_id, entry.id, entry.ops_name, entry.avail.isoformat(), entry.planned)

    summary = "\n".join(format_change(entry) for entry in results) or "No changes were made."
    logger.info(f"[PLAN] chat_id={ctx.chat_id} committed {len(results)} change(s)")
    await ctx.show(state.msg_id, summary)
    if results:
        await plan_notifications(ctx.db, ctx.gateway, summary, originator_id=ctx.user_id)
    return Start()


async def plan_pressed(ctx: HandlerContext, state: PlanView, action: CallbackAction):
    if isinstance(action, Cancel):
        await ctx.show(state.msg_id, "Planning cancelled. No changes were saved.")
        return Start()

    role_type = action.role_type if isinstance(action, ViewRole) else state.role_type
    overlay = state.overlay.refresh(await fetch_snapshot(ctx, state.user, state.day, role_type))

    if isinstance(action, Done):
        return await _commit(ctx, state, overlay)

    start = state.start
    if isinstance(action, Toggle):
        if overlay.get(action.id) is None:
            await ctx.answer("That entry is no longer available.")
        else:
            overlay = overlay.toggle(action.id)
    elif isinstance(action, Prev):
        start -= ctx.page_size
    elif isinstance(action, Next):
        start += ctx.page_size
    elif isinstance(action, ViewRole):
        start = 0

    start = overlay.clamp_start(start, ctx.page_size)
    return await _render(ctx, state.model_copy(update={"overlay": overlay, "start": start, "role_type": role_type}))


def register(engine: DialogueEngine) -> None:
    engine.command(
        "plan",
        plan_command,
        access=Access.ADMIN,
        private=True,
        description="Plan duty by ops name or date",
    )
    engine.on_message(PlanSelect, target_received)
    engine.on_button(PlanView, PLAN_ACTIONS, plan_pressed)
