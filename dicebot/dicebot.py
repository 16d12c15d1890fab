import logging
import random

from redbot.core import commands, Config
from redbot.core.bot import Red
from redbot.core.utils.chat_formatting import pagify

from .dicebot_core import (
    # Constants
    DEFAULT_EXPRESSION,
    MAX_DICE_SIDES,
    MAX_EXPLOSION_DRAWS,
    MAX_ROLLED_DICE,
    # Types
    DiceError,
    RollLimits,
    # Engine
    evaluate_to_string,
    roll_many,
    roll_bincount,
    inline_rolls,
    display_name_for,
)

log = logging.getLogger("red.dicebot")

DEFAULT_GLOBAL = {
    "max_rolled_dice": MAX_ROLLED_DICE,
    "max_dice_sides": MAX_DICE_SIDES,
    "max_explosion_draws": MAX_EXPLOSION_DRAWS,
}

# Three Discord messages of content
MAX_ROLL_MANY_PAGES = 3


class Dicebot(commands.Cog):
    """Roll dice expressions mixed with arithmetic.

    Supports:
    - `NdS` dice and `NdF` Fudge dice (faces -3, 0, 3)
    - Exploding (`!`) and compounding (`!!`) dice
    - Exclusive filters (`<15`, `>5`) with struck-through discarded rolls
    - Any arithmetic around the dice: `(3d3 * 2) + 1d10`
    """

    def __init__(self, bot: Red):
        self.bot = bot
        self.config = Config.get_conf(
            self, identifier=2718281828, force_registration=True
        )
        self.config.register_global(**DEFAULT_GLOBAL)
        self.rng = random.Random()

    async def _get_limits(self) -> RollLimits:
        settings = await self.config.all()
        return RollLimits(
            max_rolled_dice=settings["max_rolled_dice"],
            max_dice_sides=settings["max_dice_sides"],
            max_explosion_draws=settings["max_explosion_draws"],
        )

    async def _send_pages(self, ctx: commands.Context, lines, max_pages: int = None) -> None:
        pages = list(pagify("\n".join(lines), delims=["\n", " "]))
        if max_pages is not None and len(pages) > max_pages:
            await ctx.send(
                f"Error: Results are limited to what fits into {max_pages} messages."
            )
            return
        for page in pages:
            await ctx.send(page)

    # --- ROLL COMMANDS ---

    @commands.command(name="roll", aliases=["r"])
    async def roll(self, ctx: commands.Context, *, roll_string: str = DEFAULT_EXPRESSION):
        """Rolls dice.

        `1d20` rolls a single d20.
        `2d10` rolls two d10s.
        `4dF` rolls four Fudge dice (values -3, 0, 3).
        `(3d3 * 2) + 1d10` rolls 3d3, doubles them, then adds a d10.
        `10d20<15` rolls 10d20 and only keeps the rolls below 15.
        `10d20!` explodes: every max roll adds another d20.
        `10d20!!>20` compounds: a max roll adds onto the same die, and only dice above 20 count.
        """
        limits = await self._get_limits()
        try:
            result = evaluate_to_string(roll_string, self.rng, limits)
        except DiceError as e:
            log.debug(f"Roll failed for {ctx.author} ({ctx.author.id}): roll_string='{roll_string}': {e}")
            await ctx.send(f"Error: {e}")
            return
        await self._send_pages(ctx, [result])

    @commands.command(name="roll_many", aliases=["rm"])
    async def roll_many(self, ctx: commands.Context, times: int, *, roll_string: str = DEFAULT_EXPRESSION):
        """Rolls the same dice many times and shows each result.

        `roll_many 10 5d20` rolls 5d20 ten times.
        Limited to 100 rolls and three messages of output.
        """
        limits = await self._get_limits()
        try:
            lines = roll_many(roll_string, times, self.rng, limits)
        except DiceError as e:
            log.debug(f"Roll many failed for {ctx.author} ({ctx.author.id}): roll_string='{roll_string}': {e}")
            await ctx.send(f"Error: {e}")
            return
        await self._send_pages(ctx, lines, MAX_ROLL_MANY_PAGES)

    @commands.command(name="roll_bincount", aliases=["rb"])
    async def roll_bincount(self, ctx: commands.Context, times: int, *, roll_string: str = DEFAULT_EXPRESSION):
        """Rolls the same dice many times and counts each result.

        `roll_bincount 100 3d6` shows how often each total came up.
        Limited to 500 rolls.
        """
        limits = await self._get_limits()
        try:
            counts = roll_bincount(roll_string, times, self.rng, limits)
        except DiceError as e:
            log.debug(f"Roll bincount failed for {ctx.author} ({ctx.author.id}): roll_string='{roll_string}': {e}")
            await ctx.send(f"Error: {e}")
            return
        await self._send_pages(ctx, [f"{value}: {count}" for value, count in counts])

    @commands.command(name="inline", aliases=["i"])
    async def inline(self, ctx: commands.Context, *, message: str):
        """Repeats your message with every roll in [[brackets]] rolled.

        `inline I attack the dragon [[2d20>15]].`
        """
        limits = await self._get_limits()
        try:
            rolled = inline_rolls(message, self.rng, limits)
        except DiceError as e:
            log.debug(f"Inline roll failed for {ctx.author} ({ctx.author.id}): message='{message}': {e}")
            await ctx.send(f"Error: {e}")
            return
        await self._send_pages(ctx, [f"{display_name_for(ctx.author.name)}: {rolled}"])

    # --- SETTINGS ---

    @commands.group(name="diceset")
    @commands.is_owner()
    async def diceset(self, ctx: commands.Context):
        """Configure the dice limits."""
        pass

    @diceset.command(name="show")
    async def diceset_show(self, ctx: commands.Context):
        """Show the current dice limits."""
        limits = await self._get_limits()
        await ctx.send(
            f"Dice per term: < {limits.max_rolled_dice}\n"
            f"Sides per die: < {limits.max_dice_sides}\n"
            f"Exploding rolls per term: <= {limits.max_explosion_draws}"
        )

    async def _set_limit(self, ctx: commands.Context, key: str, value: int):
        if value < 1:
            await ctx.send("Limits must be at least 1.")
            return
        await self.config.set_raw(key, value=value)
        log.info(f"Owner {ctx.author} ({ctx.author.id}) set {key} to {value}")
        await ctx.send(f"Set {key} to {value}.")

    @diceset.command(name="maxdice")
    async def diceset_maxdice(self, ctx: commands.Context, value: int):
        """Set the exclusive limit on dice rolled per term."""
        await self._set_limit(ctx, "max_rolled_dice", value)

    @diceset.command(name="maxsides")
    async def diceset_maxsides(self, ctx: commands.Context, value: int):
        """Set the exclusive limit on sides per die."""
        await self._set_limit(ctx, "max_dice_sides", value)

    @diceset.command(name="maxdraws")
    async def diceset_maxdraws(self, ctx: commands.Context, value: int):
        """Set the limit on rolls an exploding term may make."""
        await self._set_limit(ctx, "max_explosion_draws", value)

    @diceset.command(name="reset")
    async def diceset_reset(self, ctx: commands.Context):
        """Restore the default dice limits."""
        await self.config.clear_all_globals()
        log.info(f"Owner {ctx.author} ({ctx.author.id}) reset dice limits")
        await ctx.send("Dice limits reset to defaults.")
