import discord

import bot_config


def team_thumbnail(team_number):
    return bot_config.TEAM_AVATAR_URL.format(team_number=team_number)


def create_embed(title, description, color, fields=(), thumbnail_url=None, footer=None):
    """Builds the embeds used across the setup flow.

    `fields` is a sequence of dicts with name, value and an optional inline flag.
    """
    embed = discord.Embed(title=title, description=description, color=color)

    for field in fields:
        embed.add_field(
            name=field['name'],
            value=field['value'],
            inline=field.get('inline', False)
        )

    if thumbnail_url:
        embed.set_thumbnail(url=thumbnail_url)
    if footer:
        embed.set_footer(text=footer)
    return embed
