"""
/register: collect role, type, name and ops name, then file an application
for an admin to review with /approve.
"""
import logging

from roster.core.audit import AuditLog
from roster.models.enums import RoleType, UsrType
from roster.notifier.emit import register_notifications
from roster.services.users import (
    clean_name,
    clean_ops_name,
    create_apply,
    get_apply_by_tele_id,
    ops_name_taken,
)
from roster.telegram.callbacks import Cancel, CallbackAction, CallbackActions, Confirm, generate_token
from roster.telegram.engine import Access, DialogueEngine, HandlerContext, MessageEvent
from roster.telegram.states import (
    RegisterComplete,
    RegisterName,
    RegisterOpsName,
    RegisterRole,
    RegisterType,
    Start,
    State,
)

logger = logging.getLogger(__name__)


class ChooseRole(CallbackAction):
    tag = "role"
    role_type: RoleType


class ChooseType(CallbackAction):
    tag = "type"
    usr_type: UsrType


ROLE_ACTIONS = CallbackActions("reg_role", ChooseRole, Cancel)
TYPE_ACTIONS = CallbackActions("reg_type", ChooseType, Cancel)
CONFIRM_ACTIONS = CallbackActions("reg_ok", Confirm, Cancel)


def _role_buttons(token: str):
    return [
        [(role.value, ROLE_ACTIONS.encode(ChooseRole(role_type=role), token)) for role in RoleType],
        [("CANCEL", ROLE_ACTIONS.encode(Cancel(), token))],
    ]


def _type_buttons(token: str):
    return [
        [(usr_type.value, TYPE_ACTIONS.encode(ChooseType(usr_type=usr_type), token)) for usr_type in UsrType],
        [("CANCEL", TYPE_ACTIONS.encode(Cancel(), token))],
    ]


async def register_command(ctx: HandlerContext, state: State, args: str):
    if ctx.user is not None:
        await ctx.reply("You are already registered.")
        return Start()
    if await ctx.store(get_apply_by_tele_id, ctx.user_id):
        await ctx.reply("Your registration is pending approval.")
        return Start()

    token = generate_token()
    msg_id = await ctx.send("Registering. Please select your role:", _role_buttons(token))
    return RegisterRole(msg_id=msg_id, token=token)


async def role_selected(ctx: HandlerContext, state: RegisterRole, action: CallbackAction):
    if isinstance(action, Cancel):
        await ctx.show(state.msg_id, "Registration cancelled.")
        return Start()

    token = generate_token()
    msg_id = await ctx.show(
        state.msg_id,
        f"Role: {action.role_type.value}\nPlease select your type:",
        _type_buttons(token),
    )
    return RegisterType(msg_id=msg_id, token=token, role_type=action.role_type)


async def type_selected(ctx: HandlerContext, state: RegisterType, action: CallbackAction):
    if isinstance(action, Cancel):
        await ctx.show(state.msg_id, "Registration cancelled.")
        return Start()

    await ctx.show(state.msg_id, f"Role: {state.role_type.value}\nType: {action.usr_type.value}")
    await ctx.reply("Please type your full name:")
    return RegisterName(role_type=state.role_type, usr_type=action.usr_type)


async def name_received(ctx: HandlerContext, state: RegisterName, event: MessageEvent):
    name = clean_name(event.text)
    if name is None:
        await ctx.reply("Invalid name. Use letters and spaces only (max 64 characters). Please try again:")
        return None

    await ctx.reply("Please type your ops name:")
    return RegisterOpsName(role_type=state.role_type, usr_type=state.usr_type, name=name)


async def ops_name_received(ctx: HandlerContext, state: RegisterOpsName, event: MessageEvent):
    ops_name = clean_ops_name(event.text)
    if ops_name is None:
        await ctx.reply("Invalid ops name. Use letters, digits and spaces only (max 20 characters). Please try again:")
        return None
    if await ctx.store(ops_name_taken, ops_name, tele_id=ctx.user_id):
        await ctx.reply(f"The ops name {ops_name} is already in use. Please choose another:")
        return None

    token = generate_token()
    text = (
        "Please confirm your details:\n"
        f"Name: {state.name}\n"
        f"Ops name: {ops_name}\n"
        f"Role: {state.role_type.value}\n"
        f"Type: {state.usr_type.value}"
    )
    buttons = [[
        ("CONFIRM", CONFIRM_ACTIONS.encode(Confirm(), token)),
        ("CANCEL", CONFIRM_ACTIONS.encode(Cancel(), token)),
    ]]
    msg_id = await ctx.send(text, buttons)
    return RegisterComplete(
        msg_id=msg_id,
        token=token,
        role_type=state.role_type,
        usr_type=state.usr_type,
        name=state.name,
        ops_name=ops_name,
    )


async def registration_confirmed(ctx: HandlerContext, state: RegisterComplete, action: CallbackAction):
    if isinstance(action, Cancel):
        await ctx.show(state.msg_id, "Registration cancelled.")
        return Start()

    # Someone may have claimed the ops name while this screen was open
    if await ctx.store(ops_name_taken, state.ops_name, tele_id=ctx.user_id):
        await ctx.show(state.msg_id, f"The ops name {state.ops_name} was taken in the meantime.")
        await ctx.reply("Please type another ops name:")
        return RegisterOpsName(role_type=state.role_type, usr_type=state.usr_type, name=state.name)
    if ctx.user is not None or await ctx.store(get_apply_by_tele_id, ctx.user_id):
        await ctx.show(state.msg_id, "You already have a registration on file.")
        return Start()

    apply = await ctx.store(
        create_apply,
        tele_id=ctx.user_id,
        chat_username=ctx.username,
        name=state.name,
        ops_name=state.ops_name,
        role_type=state.role_type,
        usr_type=state.usr_type,
    )
    AuditLog.log_registration("apply", ctx.user_id, apply.ops_name)

    await ctx.show(state.msg_id, "Registration submitted. An admin will review it shortly.")
    await register_notifications(
        ctx.db,
        ctx.gateway,
        f"New registration: {state.ops_name} ({state.name}), "
        f"{state.role_type.value} {state.usr_type.value}. Use /approve to review.",
    )
    return Start()


def register(engine: DialogueEngine) -> None:
    engine.command(
        "register",
        register_command,
        access=Access.PUBLIC,
        private=True,
        description="Register as a roster member",
    )
    engine.on_button(RegisterRole, ROLE_ACTIONS, role_selected)
    engine.on_button(RegisterType, TYPE_ACTIONS, type_selected)
    engine.on_message(RegisterName, name_received)
    engine.on_message(RegisterOpsName, ops_name_received)
    engine.on_button(RegisterComplete, CONFIRM_ACTIONS, registration_confirmed)
