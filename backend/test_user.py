"""/user: edit, promote and remove registered users."""
import asyncio
from datetime import timedelta

import pytest

from roster.core.exceptions import UserChangeRefused
from roster.db.base import utcnow
from roster.models.enums import RoleType, UsrType
from roster.models.scheduled_notification import ScheduledNotification
from roster.models.user import User
from roster.services.notifications import get_chats_with_flag, update_notification_settings
from roster.services.users import get_user_by_tele_id, remove_user, update_user
from roster.telegram.states import Start, UserDeleteConfirm, UserEdit, UserEditName, UserEditOpsName, UserSelect


def test_edit_fields_then_save(db, chat, gateway, make_user):
    make_user(1, "ADMIN", admin=True)
    make_user(2, "ALPHA", name="Alpha Tan")
    update_notification_settings(db, -300, notif_system=True)
    admin = chat(1)

    async def scenario():
        await admin.say("/user alpha")
        assert isinstance(admin.state, UserEdit)
        assert "DELETE" in gateway.labels(1)

        await admin.press("NAME")
        assert isinstance(admin.state, UserEditName)
        await admin.say("R2-D2!")
        assert isinstance(admin.state, UserEditName)
        await admin.say("alpha   lim")

        await admin.press("OPS NAME")
        await admin.say("admin")
        assert isinstance(admin.state, UserEditOpsName)
        await admin.say("al")

        await admin.press("ROLE")
        await admin.press("ARO")
        await admin.press("ADMIN")
        await admin.press("MAKE ADMIN")
        assert "Ops name: AL*" in gateway.screen(1).text
        assert "Type: ACTIVE\n" in gateway.screen(1).text
        await admin.press("DONE")

    asyncio.run(scenario())

    summary = "ALPHA updated:\nName: Alpha Tan -> alpha lim\nOps name: ALPHA -> AL\nRole: PILOT -> ARO\nAdmin: NO -> YES"
    assert isinstance(admin.state, Start)
    assert gateway.screen(1).text == summary
    assert gateway.texts(-300) == [f"{summary}\n(by ADMIN)"]
    assert gateway.texts(2) == ["You are now an admin. Type /help to see the admin commands."]
    assert "The ops name ADMIN is already in use. Type another:" in gateway.texts(1)

    db.expire_all()
    user = get_user_by_tele_id(db, 2)
    assert (user.name, user.ops_name, user.role_type, user.usr_type, user.admin) == (
        "alpha lim", "AL", RoleType.ARO, UsrType.ACTIVE, True
    )


def test_list_then_pick_by_ops_name(chat, gateway, make_user):
    make_user(1, "ADMIN", admin=True)
    make_user(2, "ALPHA")
    admin = chat(1)

    async def scenario():
        await admin.say("/user")
        assert isinstance(admin.state, UserSelect)
        await admin.say("nobody")
        assert isinstance(admin.state, UserSelect)
        await admin.say("alpha")

    asyncio.run(scenario())
    texts = gateway.texts(1)
    assert texts[0].startswith("Registered users:\nADMIN (Admin) [admin]\nALPHA (Alpha)\n")
    assert texts[1].startswith("No user has the ops name 'nobody'")
    assert isinstance(admin.state, UserEdit)
    assert admin.state.original.ops_name == "ALPHA"


def test_cancel_keeps_user_unchanged(db, chat, gateway, make_user):
    make_user(1, "ADMIN", admin=True)
    make_user(2, "ALPHA")
    admin = chat(1)

    async def scenario():
        await admin.say("/user ALPHA")
        await admin.press("TYPE")
        await admin.press("NS")
        await admin.press("CANCEL")

    asyncio.run(scenario())
    assert gateway.screen(1).text == "Editing ALPHA cancelled. No changes were saved."
    db.expire_all()
    assert get_user_by_tele_id(db, 2).usr_type is UsrType.ACTIVE


def test_last_admin_cannot_be_demoted_or_removed(db, chat, gateway, make_user):
    only = make_user(1, "ADMIN", admin=True)
    asyncio.run(chat(1).say("/user ADMIN"))

    labels = gateway.labels(1)
    assert "ADMIN" not in labels
    assert "DELETE" not in labels
    with pytest.raises(UserChangeRefused):
        update_user(db, only.id, only.name, only.ops_name, only.role_type, only.usr_type, admin=False)
    with pytest.raises(UserChangeRefused):
        remove_user(db, only.id)


def test_demotion_refused_when_other_admin_left_meanwhile(db, chat, gateway, make_user):
    first = make_user(1, "ADMIN", admin=True)
    make_user(3, "BRAVO", admin=True)
    admin = chat(1)

    async def scenario():
        await admin.say("/user BRAVO")
        await admin.press("ADMIN")
        await admin.press("NOT ADMIN")
        # ADMIN steps down in another chat, leaving BRAVO as the only admin
        update_user(db, first.id, first.name, first.ops_name, first.role_type, first.usr_type, admin=False)
        await admin.press("DONE")

    asyncio.run(scenario())
    assert isinstance(admin.state, UserEdit)
    assert gateway.screen(1).text.startswith("BRAVO is the only admin and must stay one.")
    db.expire_all()
    assert get_user_by_tele_id(db, 3).admin is True


def test_demoted_user_is_told(db, chat, gateway, make_user):
    make_user(1, "ADMIN", admin=True)
    make_user(3, "BRAVO", admin=True)
    admin = chat(1)

    async def scenario():
        await admin.say("/user BRAVO")
        await admin.press("ADMIN")
        await admin.press("NOT ADMIN")
        await admin.press("DONE")

    asyncio.run(scenario())
    assert gateway.screen(1).text == "BRAVO updated:\nAdmin: YES -> NO"
    assert gateway.texts(3) == ["You are no longer an admin."]


def test_remove_user_invalidates_reminders_and_subscriptions(db, chat, gateway, make_user, make_availability):
    make_user(1, "ADMIN", admin=True)
    alpha = make_user(2, "ALPHA")
    availability = make_availability(alpha, 5, planned=True)
    db.add_all([
        ScheduledNotification(avail_id=availability.id, scheduled_time=utcnow() + timedelta(days=1)),
        ScheduledNotification(avail_id=availability.id, scheduled_time=utcnow() - timedelta(days=1), sent=True),
    ])
    db.commit()
    update_notification_settings(db, 2, notif_plan=True)
    admin = chat(1)

    async def scenario():
        await admin.say("/user ALPHA")
        await admin.press("DELETE")
        assert isinstance(admin.state, UserDeleteConfirm)
        await admin.press("CONFIRM")
        await chat(2).say("/availability")

    asyncio.run(scenario())

    assert isinstance(admin.state, Start)
    assert gateway.screen(1).text == "ALPHA has been removed."
    assert gateway.texts(2) == [
        "You have been deregistered.",
        "You are not registered. Use /register in a private chat with the bot.",
    ]

    db.expire_all()
    assert get_user_by_tele_id(db, 2) is None
    removed = db.query(User).filter(User.tele_id == 2).one()
    assert (removed.is_valid, removed.admin) == (False, False)
    validity = {row.sent: row.is_valid for row in db.query(ScheduledNotification)}
    assert validity == {False: False, True: True}
    assert get_chats_with_flag(db, "notif_plan") == []


def test_back_from_delete_keeps_user(db, chat, gateway, make_user):
    make_user(1, "ADMIN", admin=True)
    make_user(2, "ALPHA")
    admin = chat(1)

    async def scenario():
        await admin.say("/user ALPHA")
        await admin.press("DELETE")
        await admin.press("BACK")

    asyncio.run(scenario())
    assert isinstance(admin.state, UserEdit)
    assert get_user_by_tele_id(db, 2) is not None


def test_user_is_admin_only(chat, gateway, make_user):
    make_user(2, "ALPHA")
    asyncio.run(chat(2).say("/user"))
    assert gateway.texts(2) == ["This command is only available to admins."]
