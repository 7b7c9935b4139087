import asyncio
import io
import logging
import os
import weakref

import aiohttp
import discord
from discord import app_commands

import bot_config
from bots.team_setup import (
    ProvisionError,
    SetupSession,
    TeamSetupFlow,
    build_existing_team_embed,
    build_setup_message,
    create_roles,
    delete_role,
    find_team_role,
    set_nickname,
)
from utils.reaction_map import PublishError, ReactionMap
from utils.team_api import TeamLookupClient, TeamNotFoundError

logger = logging.getLogger("TeamBot")

MESSAGE_LIMIT = 2000


def is_admin(interaction: discord.Interaction) -> bool:
    permissions = getattr(interaction.user, 'guild_permissions', None)
    return bool(permissions and permissions.administrator)


class TeamBot(discord.Client):
    def __init__(self, *args, tba_key=None, reaction_map_path=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.tree = app_commands.CommandTree(self)
        self.tba_key = tba_key or os.getenv('TBA_API_KEY')
        if not self.tba_key:
            logger.warning("TBA_API_KEY not set; team lookups will be rejected by The Blue Alliance.")

        map_path = reaction_map_path or os.getenv('REACTION_MAP_PATH') or bot_config.REACTION_MAP_FILE
        self.reaction_map = ReactionMap(map_path)

        self.http_session = None
        self.team_client = None
        # Entries drop out once no /setup call holds or waits on the lock
        self._team_locks = weakref.WeakValueDictionary()
        self.register_commands()

    async def setup_hook(self):
        self.http_session = aiohttp.ClientSession()
        self.team_client = TeamLookupClient(self.http_session, self.tba_key)

        try:
            synced = await self.tree.sync()
            logger.info(f"Synced {len(synced)} slash commands")
        except discord.HTTPException as e:
            logger.error(f"Failed to sync commands: {e}")

    async def close(self):
        if self.http_session:
            await self.http_session.close()
        await super().close()

    async def on_ready(self):
        logger.info(f"TeamBot logged in as {self.user} (ID: {self.user.id})")

        for guild in self.guilds:
            try:
                await guild.me.edit(nick=bot_config.TEAM_BOT_NICKNAME)
            except discord.HTTPException as e:
                logger.warning(f"Nickname change failed in {guild.name}: {e}")

    async def on_message(self, message):
        if message.author.bot or not bot_config.ENABLE_KEYWORD_REACTIONS:
            return

        # Keep order, drop duplicates when two keywords share an emoji
        for emoji in dict.fromkeys(self.reaction_map.matches(message.content)):
            try:
                await message.add_reaction(emoji)
            except discord.HTTPException as e:
                logger.warning(f"Failed to add reaction {emoji}: {e}")

    def team_lock(self, guild_id, team_number) -> asyncio.Lock:
        key = (guild_id, team_number)
        lock = self._team_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._team_locks[key] = lock
        return lock

    def register_commands(self):
        @self.tree.command(name="setup", description="Setup command to get you started!")
        @app_commands.guild_only()
        @app_commands.describe(nickname="Your name", teamnumber="The team number")
        async def setup_command(interaction: discord.Interaction, nickname: str, teamnumber: int):
            await self.handle_setup(interaction, nickname, teamnumber)

        @self.tree.command(name="showmap", description="Display the current reaction map")
        @app_commands.guild_only()
        async def showmap_command(interaction: discord.Interaction):
            await self.handle_showmap(interaction)

        @self.tree.command(name="updatemap", description="Update the reaction map")
        @app_commands.guild_only()
        @app_commands.describe(keyword="The keyword to update", emoji="The emoji to associate with the keyword")
        async def updatemap_command(interaction: discord.Interaction, keyword: str, emoji: str):
            await self.handle_updatemap(interaction, keyword, emoji)

    # --- /setup ---

    async def handle_setup(self, interaction: discord.Interaction, nickname: str, team_number: int):
        guild = interaction.guild
        if guild is None:
            await interaction.response.send_message("This command can only be used in a server.", ephemeral=True)
            return

        member = interaction.user
        await interaction.response.defer(thinking=True)

        async with self.team_lock(guild.id, team_number):
            existing = find_team_role(guild, team_number)
            if existing:
                await self.add_existing_role(interaction, member, existing, nickname, team_number)
                return

            try:
                identity = await self.team_client.fetch_team_identity(team_number)
            except TeamNotFoundError:
                await interaction.followup.send("Team data or colors not found.")
                return
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.error(f"Team lookup for {team_number} failed: {e!r}")
                await interaction.followup.send("Could not reach the team lookup services. Please try again later.")
                return

            try:
                roles = await create_roles(guild, identity)
            except ProvisionError as e:
                logger.error(f"{e} (requested by {member})")
                await interaction.followup.send("There was an error creating your team roles.")
                return

        embed, view = build_setup_message(roles, team_number, member.id)
        try:
            await interaction.edit_original_response(embed=embed, view=view)
        except discord.HTTPException as e:
            logger.error(f"Could not present color choices for team {team_number}: {e}")
            view.stop()
            for role in roles:
                await delete_role(role, "Team setup could not be presented")
            return

        session = SetupSession(
            interaction=interaction,
            member=member,
            team_number=team_number,
            nickname=nickname,
            roles=roles,
        )
        await TeamSetupFlow(self, session, view).run()

    async def add_existing_role(self, interaction, member, role, nickname, team_number):
        try:
            await member.add_roles(role)
            await set_nickname(member, nickname, team_number)
            await interaction.followup.send(embed=build_existing_team_embed(role, member, team_number))
            logger.info(f"Added {member} to existing role {role.name}")
        except discord.HTTPException as e:
            logger.error(f"Error adding {member} to existing role {role.name}: {e}")
            await interaction.followup.send("There was an error adding you to the existing role.")

    # --- Reaction Map ---

    async def handle_showmap(self, interaction: discord.Interaction):
        if not is_admin(interaction):
            await interaction.response.send_message("You do not have permission to use this command.", ephemeral=True)
            return

        self.reaction_map.mapping = self.reaction_map.load()
        map_string = self.reaction_map.to_json()
        content = f"```json\n{map_string}\n```"

        if len(content) <= MESSAGE_LIMIT:
            await interaction.response.send_message(content)
            return

        filename = os.path.basename(self.reaction_map.path)
        file = discord.File(io.BytesIO(map_string.encode('utf-8')), filename=filename)
        await interaction.response.send_message("The reaction map is too long to show inline:", file=file)

    async def handle_updatemap(self, interaction: discord.Interaction, keyword: str, emoji: str):
        if not is_admin(interaction):
            await interaction.response.send_message("You do not have permission to use this command.", ephemeral=True)
            return

        await interaction.response.send_message(f"Updating Keyword: {keyword} with Emoji: {emoji}...")
        reply = await interaction.original_response()

        try:
            await self.reaction_map.update(keyword, emoji)
        except PublishError as e:
            logger.warning(f"Saved {keyword}: {emoji} but could not publish it: {e}")
            await reply.edit(content=f"Updated Keyword: {keyword} but failed to push changes.")
            await reply.add_reaction("❌")
        except OSError as e:
            logger.error(f"Error updating {self.reaction_map.path}: {e}")
            await reply.edit(content="Failed to update the reaction map.")
            await reply.add_reaction("❌")
        else:
            await reply.edit(content=f"Successfully updated Keyword: {keyword} with Emoji: {emoji}")
            await reply.add_reaction("✅")
