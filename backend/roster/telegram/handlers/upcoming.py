"""/upcoming: the caller's planned duties."""
from roster.models.enums import UsrType
from roster.services.scheduling import list_planned_upcoming, local_today
from roster.telegram.engine import Access, DialogueEngine, HandlerContext
from roster.telegram.states import State
from roster.telegram.utils import format_date, truncate


async def upcoming_command(ctx: HandlerContext, state: State, args: str):
    entries = await ctx.store(list_planned_upcoming, ctx.user.id, local_today())
    if not entries:
        await ctx.reply("You have no upcoming planned duties.")
        return None

    lines = ["Your upcoming planned duties:"]
    for entry in entries:
        line = f"{format_date(entry.avail)} {entry.ict_type.value}"
        if entry.remarks:
            line += f", {truncate(entry.remarks, 50)}"
        if entry.usr_type is UsrType.NS:
            line += " (SAF100 issued)" if entry.saf100 else " (SAF100 pending)"
        lines.append(line)
    await ctx.reply("\n".join(lines))
    return None


def register(engine: DialogueEngine) -> None:
    engine.command(
        "upcoming",
        upcoming_command,
        access=Access.REGISTERED,
        private=True,
        description="Show your upcoming planned duties",
    )
