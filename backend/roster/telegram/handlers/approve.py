"""/approve: review pending registrations."""
import logging

from roster.core.audit import AuditLog
from roster.notifier.emit import register_notifications
from roster.schemas.user import ApplySchema
from roster.services.users import approve_apply, get_apply, list_applies, reject_apply
from roster.telegram.callbacks import (
    Back,
    CallbackAction,
    CallbackActions,
    Done,
    Next,
    Prev,
    Select,
    generate_token,
)
from roster.telegram.engine import Access, DialogueEngine, HandlerContext
from roster.telegram.states import ApplyReview, ApplyView, Start, State
from roster.telegram.utils import page_footer

logger = logging.getLogger(__name__)


class Approve(CallbackAction):
    tag = "approve"


class ApproveAdmin(CallbackAction):
    tag = "admin"


class Reject(CallbackAction):
    tag = "reject"


LIST_ACTIONS = CallbackActions("apply", Select, Prev, Next, Done)
REVIEW_ACTIONS = CallbackActions("review", Approve, ApproveAdmin, Reject, Back)


def _list_screen(applies, start: int, page_size: int, token: str, notice: str = ""):
    lines = [notice, ""] if notice else []
    if not applies:
        lines.append("There are no pending registrations.")
        return "\n".join(lines), [[("DONE", LIST_ACTIONS.encode(Done(), token))]]

    lines.append(f"Pending registrations ({len(applies)}):")
    buttons = []
    for apply in applies[start:start + page_size]:
        label = f"{apply.ops_name} ({apply.name})"
        buttons.append([(label, LIST_ACTIONS.encode(Select(id=apply.id), token))])

    nav = []
    if start > 0:
        nav.append(("PREV", LIST_ACTIONS.encode(Prev(), token)))
    if start + page_size < len(applies):
        nav.append(("NEXT", LIST_ACTIONS.encode(Next(), token)))
    if nav:
        buttons.append(nav)
    buttons.append([("DONE", LIST_ACTIONS.encode(Done(), token))])
    lines.append(page_footer(start, page_size, len(applies)))
    return "\n".join(lines).rstrip(), buttons


async def _show_list(ctx: HandlerContext, msg_id, start: int, notice: str = "") -> ApplyView:
    applies = await ctx.store(list_applies)
    if applies:
        last_start = ((len(applies) - 1) // ctx.page_size) * ctx.page_size
        start = max(0, min(start, last_start))
    else:
        start = 0

    token = generate_token()
    text, buttons = _list_screen(applies, start, ctx.page_size, token, notice)
    if msg_id is None:
        msg_id = await ctx.send(text, buttons)
    else:
        msg_id = await ctx.show(msg_id, text, buttons)
    return ApplyView(msg_id=msg_id, token=token, start=start)


async def approve_command(ctx: HandlerContext, state: State, args: str):
    return await _show_list(ctx, None, 0)


async def list_pressed(ctx: HandlerContext, state: ApplyView, action: CallbackAction):
    if isinstance(action, Done):
        await ctx.show(state.msg_id, "Finished reviewing registrations.")
        return Start()
    if isinstance(action, Prev):
        return await _show_list(ctx, state.msg_id, state.start - ctx.page_size)
    if isinstance(action, Next):
        return await _show_list(ctx, state.msg_id, state.start + ctx.page_size)

    apply = await ctx.store(get_apply, action.id)
    if apply is None:
        return await _show_list(ctx, state.msg_id, state.start, "That registration is no longer pending.")

    snapshot = ApplySchema.model_validate(apply)
    token = generate_token()
    text = (
        f"Registration #{snapshot.id}\n"
        f"Name: {snapshot.name}\n"
        f"Ops name: {snapshot.ops_name}\n"
        f"Role: {snapshot.role_type.value}\n"
        f"Type: {snapshot.usr_type.value}\n"
        f"Telegram: @{snapshot.chat_username or '-'}"
    )
    buttons = [
        [
            ("APPROVE", REVIEW_ACTIONS.encode(Approve(), token)),
            ("APPROVE AS ADMIN", REVIEW_ACTIONS.encode(ApproveAdmin(), token)),
        ],
        [
            ("REJECT", REVIEW_ACTIONS.encode(Reject(), token)),
            ("BACK", REVIEW_ACTIONS.encode(Back(), token)),
        ],
    ]
    msg_id = await ctx.show(state.msg_id, text, buttons)
    return ApplyReview(msg_id=msg_id, token=token, apply=snapshot, start=state.start)


async def review_pressed(ctx: HandlerContext, state: ApplyReview, action: CallbackAction):
    if isinstance(action, Back):
        return await _show_list(ctx, state.msg_id, state.start)

    apply = state.apply
    if isinstance(action, Reject):
        rejected = await ctx.store(reject_apply, apply.id)
        if rejected is None:
            return await _show_list(ctx, state.msg_id, state.start, "That registration is no longer pending.")
        AuditLog.log_registration("reject", apply.tele_id, apply.ops_name, decided_by=ctx.user_id)
        await ctx.reply("Your registration has been rejected.", chat_id=apply.tele_id)
        return await _show_list(ctx, state.msg_id, state.start, f"Rejected {apply.ops_name}.")

    as_admin = isinstance(action, ApproveAdmin)
    user = await ctx.store(approve_apply, apply.id, admin=as_admin)
    if user is None:
        return await _show_list(ctx, state.msg_id, state.start, "That registration is no longer pending.")

    AuditLog.log_registration("approve", apply.tele_id, apply.ops_name, decided_by=ctx.user_id, admin=as_admin)
    await ctx.reply(
        "Your registration has been approved. Type /help to see what you can do.",
        chat_id=apply.tele_id,
    )
    approver = ctx.user.ops_name if ctx.user else str(ctx.user_id)
    await register_notifications(
        ctx.db,
        ctx.gateway,
        f"{apply.ops_name} has been approved{' as admin' if as_admin else ''} by {approver}.",
        originator_id=ctx.user_id,
    )
    return await _show_list(ctx, state.msg_id, state.start, f"Approved {apply.ops_name}.")


def register(engine: DialogueEngine) -> None:
    engine.command(
        "approve",
        approve_command,
        access=Access.ADMIN,
        private=True,
        description="Review pending registrations",
    )
    engine.on_button(ApplyView, LIST_ACTIONS, list_pressed)
    engine.on_button(ApplyReview, REVIEW_ACTIONS, review_pressed)
