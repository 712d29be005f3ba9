"""
/user: edit or remove a registered user.

Edits are collected on the screen and written together when DONE is
pressed. The last admin can be neither demoted nor removed, so those
buttons are not offered for them.
"""
import logging
from typing import Dict, List, Optional

from roster.core.audit import AuditLog
from roster.core.exceptions import UserChangeRefused
from roster.models.enums import RoleType, UsrType
from roster.notifier.emit import system_notifications
from roster.schemas.user import UserSchema
from roster.services.users import (
    clean_name,
    clean_ops_name,
    get_user_by_ops_name,
    is_last_admin,
    list_users,
    ops_name_taken,
    remove_user,
    update_user,
)
from roster.telegram.callbacks import (
    Back,
    Cancel,
    CallbackAction,
    CallbackActions,
    Confirm,
    Done,
    generate_token,
)
from roster.telegram.engine import Access, DialogueEngine, HandlerContext, MessageEvent
from roster.telegram.states import (
    Start,
    State,
    UserDeleteConfirm,
    UserEdit,
    UserEditName,
    UserEditOpsName,
    UserEditOption,
    UserSelect,
)

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("name", "ops_name", "role_type", "usr_type", "admin")
FIELD_LABELS = {
    "name": "Name",
    "ops_name": "Ops name",
    "role_type": "Role",
    "usr_type": "Type",
    "admin": "Admin",
}


class EditName(CallbackAction):
    tag = "name"


class EditOpsName(CallbackAction):
    tag = "ops"


class EditRole(CallbackAction):
    tag = "role"


class EditType(CallbackAction):
    tag = "type"


class EditAdmin(CallbackAction):
    tag = "admin"


class Remove(CallbackAction):
    tag = "del"


class ChooseRole(CallbackAction):
    tag = "role"
    role_type: RoleType


class ChooseType(CallbackAction):
    tag = "type"
    usr_type: UsrType


class SetAdmin(CallbackAction):
    tag = "admin"
    admin: bool


EDIT_ACTIONS = CallbackActions("user", EditName, EditOpsName, EditRole, EditType, EditAdmin, Remove, Done, Cancel)
OPTION_ACTIONS = CallbackActions("user_opt", ChooseRole, ChooseType, SetAdmin, Back)
DELETE_ACTIONS = CallbackActions("user_del", Confirm, Back)


def _display(user: UserSchema, field: str) -> str:
    value = getattr(user, field)
    if isinstance(value, bool):
        return "YES" if value else "NO"
    return getattr(value, "value", value)


def diff_users(before: UserSchema, after: UserSchema) -> Dict[str, list]:
    """Changed fields as {field: [old, new]} in display form."""
    return {
        field: [_display(before, field), _display(after, field)]
        for field in EDITABLE_FIELDS
        if getattr(before, field) != getattr(after, field)
    }


def render_edit(state: UserEdit, notice: str = ""):
    original, edited, token = state.original, state.edited, state.token
    lines = [notice, ""] if notice else []
    lines.append(f"Editing {original.ops_name}")
    for field in EDITABLE_FIELDS:
        marker = "*" if getattr(original, field) != getattr(edited, field) else ""
        lines.append(f"{FIELD_LABELS[field]}: {_display(edited, field)}{marker}")
    if original != edited:
        lines.append("\nChanged fields are marked *. Press DONE to save.")

    buttons = [
        [
            ("NAME", EDIT_ACTIONS.encode(EditName(), token)),
            ("OPS NAME", EDIT_ACTIONS.encode(EditOpsName(), token)),
        ],
        [
            ("ROLE", EDIT_ACTIONS.encode(EditRole(), token)),
            ("TYPE", EDIT_ACTIONS.encode(EditType(), token)),
        ],
    ]
    if not state.last_admin:
        buttons.append([
            ("ADMIN", EDIT_ACTIONS.encode(EditAdmin(), token)),
            ("DELETE", EDIT_ACTIONS.encode(Remove(), token)),
        ])
    buttons.append([
        ("DONE", EDIT_ACTIONS.encode(Done(), token)),
        ("CANCEL", EDIT_ACTIONS.encode(Cancel(), token)),
    ])
    return "\n".join(lines), buttons


async def _show_edit(
    ctx: HandlerContext,
    msg_id: Optional[int],
    original: UserSchema,
    edited: UserSchema,
    last_admin: bool,
    notice: str = "",
) -> UserEdit:
    state = UserEdit(msg_id=msg_id or 0, token=generate_token(), original=original, edited=edited, last_admin=last_admin)
    text, buttons = render_edit(state, notice)
    if msg_id is None:
        new_id = await ctx.send(text, buttons)
    else:
        new_id = await ctx.show(msg_id, text, buttons)
    return state.model_copy(update={"msg_id": new_id})


async def _open(ctx: HandlerContext, ops_name: str):
    found = await ctx.store(get_user_by_ops_name, ops_name)
    if found is None:
        await ctx.reply(f"No user has the ops name '{ops_name}'. Type another ops name, or /cancel:")
        return None
    user = UserSchema.model_validate(found)
    last_admin = await ctx.store(is_last_admin, user.id)
    return await _show_edit(ctx, None, user, user, last_admin)


async def user_command(ctx: HandlerContext, state: State, args: str):
    if args:
        return await _open(ctx, args) or UserSelect()

    users = await ctx.store(list_users)
    lines = ["Registered users:"]
    lines.extend(f"{user.ops_name} ({user.name}){' [admin]' if user.admin else ''}" for user in users)
    lines.append("\nType the ops name of the user to edit:")
    await ctx.reply("\n".join(lines))
    return UserSelect()


async def ops_name_selected(ctx: HandlerContext, state: UserSelect, event: MessageEvent):
    return await _open(ctx, event.text.strip())


async def edit_pressed(ctx: HandlerContext, state: UserEdit, action: CallbackAction):
    original, edited = state.original, state.edited
    if isinstance(action, Cancel):
        await ctx.show(state.msg_id, f"Editing {original.ops_name} cancelled. No changes were saved.")
        return Start()
    if isinstance(action, Done):
        return await _save(ctx, state)

    carried = {"original": original, "edited": edited, "last_admin": state.last_admin}
    if isinstance(action, EditName):
        msg_id = await ctx.show(state.msg_id, f"Current name: {edited.name}\nType the new name:")
        return UserEditName(msg_id=msg_id, **carried)
    if isinstance(action, EditOpsName):
        msg_id = await ctx.show(state.msg_id, f"Current ops name: {edited.ops_name}\nType the new ops name:")
        return UserEditOpsName(msg_id=msg_id, **carried)
    if isinstance(action, Remove):
        token = generate_token()
        buttons = [[
            ("CONFIRM", DELETE_ACTIONS.encode(Confirm(), token)),
            ("BACK", DELETE_ACTIONS.encode(Back(), token)),
        ]]
        text = (
            f"Remove {original.ops_name} ({original.name})?\n"
            "Their availability stays on record, but pending reminders are cancelled "
            "and they can no longer use the bot."
        )
        msg_id = await ctx.show(state.msg_id, text, buttons)
        return UserDeleteConfirm(msg_id=msg_id, token=token, **carried)

    token = generate_token()
    if isinstance(action, EditRole):
        field, prompt = "role_type", "Select the role:"
        options = [(role.value, ChooseRole(role_type=role)) for role in RoleType]
    elif isinstance(action, EditType):
        field, prompt = "usr_type", "Select the user type:"
        options = [(usr_type.value, ChooseType(usr_type=usr_type)) for usr_type in UsrType]
    else:
        field, prompt = "admin", f"Should {original.ops_name} be an admin?"
        options = [("MAKE ADMIN", SetAdmin(admin=True)), ("NOT ADMIN", SetAdmin(admin=False))]

    buttons = [
        [(label, OPTION_ACTIONS.encode(option, token)) for label, option in options],
        [("BACK", OPTION_ACTIONS.encode(Back(), token))],
    ]
    msg_id = await ctx.show(state.msg_id, prompt, buttons)
    return UserEditOption(msg_id=msg_id, token=token, field=field, **carried)


async def option_pressed(ctx: HandlerContext, state: UserEditOption, action: CallbackAction):
    edited = state.edited
    if isinstance(action, ChooseRole):
        edited = edited.model_copy(update={"role_type": action.role_type})
    elif isinstance(action, ChooseType):
        edited = edited.model_copy(update={"usr_type": action.usr_type})
    elif isinstance(action, SetAdmin) and not state.last_admin:
        edited = edited.model_copy(update={"admin": action.admin})
    return await _show_edit(ctx, state.msg_id, state.original, edited, state.last_admin)


async def name_received(ctx: HandlerContext, state: UserEditName, event: MessageEvent):
    name = clean_name(event.text)
    if name is None:
        await ctx.reply("That name is not valid. Use letters, spaces, dots, hyphens or apostrophes:")
        return None
    edited = state.edited.model_copy(update={"name": name})
    return await _show_edit(ctx, state.msg_id, state.original, edited, state.last_admin)


async def new_ops_name_received(ctx: HandlerContext, state: UserEditOpsName, event: MessageEvent):
    ops_name = clean_ops_name(event.text)
    if ops_name is None:
        await ctx.reply("That ops name is not valid. Use up to 20 letters, digits or spaces:")
        return None
    if ops_name != state.original.ops_name and await ctx.store(ops_name_taken, ops_name):
        await ctx.reply(f"The ops name {ops_name} is already in use. Type another:")
        return None
    edited = state.edited.model_copy(update={"ops_name": ops_name})
    return await _show_edit(ctx, state.msg_id, state.original, edited, state.last_admin)


async def _save(ctx: HandlerContext, state: UserEdit):
    original, edited = state.original, state.edited
    if original == edited:
        await ctx.show(state.msg_id, f"No changes were made to {original.ops_name}.")
        return Start()

    try:
        result = await ctx.store(
            update_user,
            original.id,
            edited.name,
            edited.ops_name,
            edited.role_type,
            edited.usr_type,
            edited.admin,
        )
    except UserChangeRefused as e:
        return await _show_edit(ctx, state.msg_id, original, edited, state.last_admin, notice=str(e))
    if result is None:
        await ctx.show(state.msg_id, f"{original.ops_name} is no longer registered.")
        return Start()

    before, after = result
    changes = diff_users(before, after)
    AuditLog.log_user_change(after.id, ctx.user_id, changes)

    lines: List[str] = [f"{before.ops_name} updated:"]
    lines.extend(f"{FIELD_LABELS[field]}: {old} -> {new}" for field, (old, new) in changes.items())
    summary = "\n".join(lines)
    await ctx.show(state.msg_id, summary)

    editor = ctx.user.ops_name if ctx.user else str(ctx.user_id)
    await system_notifications(ctx.db, ctx.gateway, f"{summary}\n(by {editor})", originator_id=ctx.user_id)
    if before.admin != after.admin:
        notice = (
            "You are now an admin. Type /help to see the admin commands."
            if after.admin
            else "You are no longer an admin."
        )
        await ctx.reply(notice, chat_id=after.tele_id)
    return Start()


async def delete_pressed(ctx: HandlerContext, state: UserDeleteConfirm, action: CallbackAction):
    original = state.original
    if isinstance(action, Back):
        return await _show_edit(ctx, state.msg_id, original, state.edited, state.last_admin)

    try:
        removed = await ctx.store(remove_user, original.id)
    except UserChangeRefused as e:
        return await _show_edit(ctx, state.msg_id, original, state.edited, True, notice=str(e))
    if removed is None:
        await ctx.show(state.msg_id, f"{original.ops_name} is no longer registered.")
        return Start()

    AuditLog.log_user_removed(removed.id, removed.ops_name, ctx.user_id)
    await ctx.show(state.msg_id, f"{removed.ops_name} has been removed.")
    await ctx.reply("You have been deregistered.", chat_id=removed.tele_id)
    editor = ctx.user.ops_name if ctx.user else str(ctx.user_id)
    await system_notifications(
        ctx.db,
        ctx.gateway,
        f"{removed.ops_name} has been removed by {editor}.",
        originator_id=ctx.user_id,
    )
    return Start()


def register(engine: DialogueEngine) -> None:
    engine.command(
        "user",
        user_command,
        access=Access.ADMIN,
        private=True,
        description="Edit or remove a user",
    )
    engine.on_message(UserSelect, ops_name_selected)
    engine.on_message(UserEditName, name_received)
    engine.on_message(UserEditOpsName, new_ops_name_received)
    engine.on_button(UserEdit, EDIT_ACTIONS, edit_pressed)
    engine.on_button(UserEditOption, OPTION_ACTIONS, option_pressed)
    engine.on_button(UserDeleteConfirm, DELETE_ACTIONS, delete_pressed)
