"""/start, /help and /cancel."""
import logging

from roster.telegram.engine import DialogueEngine, HandlerContext
from roster.telegram.states import Start, State

logger = logging.getLogger(__name__)


async def cancel_command(ctx: HandlerContext, state: State, args: str):
    if isinstance(state, Start):
        await ctx.reply("Nothing to cancel.")
        return None
    logger.info(f"[CANCEL] chat_id={ctx.chat_id} abandoned {type(state).__name__}")
    await ctx.reply("Cancelled.")
    return Start()


def register(engine: DialogueEngine) -> None:
    async def help_command(ctx: HandlerContext, state: State, args: str):
        user = ctx.user
        greeting = f"Hello {user.name}!" if user else "Welcome to the duty roster bot."
        lines = [greeting, "", "Available commands:"]
        for command in engine.visible_commands(user):
            lines.append(f"/{command.name} - {command.description}")
        await ctx.reply("\n".join(lines))
        return None

    engine.command("start", help_command, description="Show this message")
    engine.command("help", help_command, description="Show this message")
    engine.command("cancel", cancel_command, description="Abort the current action")
