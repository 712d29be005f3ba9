"""
/notify: choose which broadcasts a chat receives.

Run in a group, the settings screen opens in the admin's private chat so
the group is not spammed with toggles; the result is announced back in
the group.
"""
import logging
from typing import Literal

from roster.core.audit import AuditLog
from roster.schemas.notification import NotificationSettingsSchema
from roster.services.notifications import (
    get_notification_settings,
    soft_delete_notification_settings,
    update_notification_settings,
)
from roster.telegram.callbacks import Cancel, CallbackAction, CallbackActions, Confirm, generate_token
from roster.telegram.engine import Access, DialogueEngine, HandlerContext
from roster.telegram.states import NotifySettings, Start, State

logger = logging.getLogger(__name__)

FLAG_LABELS = {
    "notif_system": "SYSTEM",
    "notif_register": "REGISTER",
    "notif_availability": "AVAILABILITY",
    "notif_plan": "PLAN",
    "notif_conflict": "CONFLICT",
}


class ToggleFlag(CallbackAction):
    tag = "f"
    flag: Literal["notif_system", "notif_register", "notif_availability", "notif_plan", "notif_conflict"]


class DisableAll(CallbackAction):
    tag = "off"


NOTIFY_ACTIONS = CallbackActions("notify", ToggleFlag, Confirm, Cancel, DisableAll)


def _describe(settings: NotificationSettingsSchema) -> str:
    return "\n".join(
        f"{label}: {'ON' if getattr(settings, flag) else 'OFF'}" for flag, label in FLAG_LABELS.items()
    )


def render_settings(state: NotifySettings):
    token = state.token
    text = f"Notification settings for chat {state.origin_chat_id}:\n{_describe(state.settings)}"
    buttons = [
        [(f"{label}: {'ON' if getattr(state.settings, flag) else 'OFF'}",
          NOTIFY_ACTIONS.encode(ToggleFlag(flag=flag), token))]
        for flag, label in FLAG_LABELS.items()
    ]
    buttons.append([
        ("CONFIRM", NOTIFY_ACTIONS.encode(Confirm(), token)),
        ("CANCEL", NOTIFY_ACTIONS.encode(Cancel(), token)),
    ])
    buttons.append([("DISABLE ALL", NOTIFY_ACTIONS.encode(DisableAll(), token))])
    return text, buttons


async def notify_command(ctx: HandlerContext, state: State, args: str):
    origin = ctx.chat_id
    current = await ctx.store(get_notification_settings, origin)
    settings = (
        NotificationSettingsSchema.model_validate(current)
        if current is not None
        else NotificationSettingsSchema(chat_id=origin)
    )

    # The private chat with a user has the user's id as chat id
    private_chat = ctx.user_id
    token = generate_token()
    screen = NotifySettings(msg_id=0, token=token, origin_chat_id=origin, settings=settings)
    text, buttons = render_settings(screen)
    msg_id = await ctx.gateway.send_message(private_chat, text, buttons)
    if msg_id is None:
        await ctx.reply("I could not message you privately. Please start a private chat with me first.")
        return None
    screen = screen.model_copy(update={"msg_id": msg_id})

    if private_chat == origin:
        return screen
    ctx.handoff(private_chat, screen)
    await ctx.reply("Notification settings sent to your private chat.")
    return None


async def settings_pressed(ctx: HandlerContext, state: NotifySettings, action: CallbackAction):
    origin = state.origin_chat_id
    changed_by = ctx.user.ops_name if ctx.user else str(ctx.user_id)

    if isinstance(action, Cancel):
        await ctx.show(state.msg_id, "Notification settings unchanged.")
        return Start()

    if isinstance(action, ToggleFlag):
        settings = state.settings.model_copy(update={action.flag: not getattr(state.settings, action.flag)})
        screen = state.model_copy(update={"settings": settings, "token": generate_token()})
        text, buttons = render_settings(screen)
        msg_id = await ctx.show(state.msg_id, text, buttons)
        return screen.model_copy(update={"msg_id": msg_id})

    if isinstance(action, DisableAll):
        await ctx.store(soft_delete_notification_settings, origin)
        AuditLog.log_notification_settings(origin, ctx.user_id)
        await ctx.show(state.msg_id, f"All notifications disabled for chat {origin}.")
        await ctx.reply(f"All notifications for this chat were disabled by {changed_by}.", chat_id=origin)
        return Start()

    flags = state.settings.flags()
    await ctx.store(update_notification_settings, origin, **flags)
    AuditLog.log_notification_settings(origin, ctx.user_id, flags)
    await ctx.show(state.msg_id, f"Notification settings saved for chat {origin}:\n{_describe(state.settings)}")
    await ctx.reply(
        f"Notification settings for this chat were updated by {changed_by}:\n{_describe(state.settings)}",
        chat_id=origin,
    )
    return Start()


def register(engine: DialogueEngine) -> None:
    engine.command(
        "notify",
        notify_command,
        access=Access.ADMIN,
        private=False,
        description="Configure the notifications this chat receives",
    )
    engine.on_button(NotifySettings, NOTIFY_ACTIONS, settings_pressed)
