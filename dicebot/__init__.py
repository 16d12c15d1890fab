async def setup(bot):
    # Imported here so the engine in dicebot_core stays importable without Red-Bot
    from .dicebot import Dicebot

    await bot.add_cog(Dicebot(bot))
