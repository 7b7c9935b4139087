import asyncio
import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

import discord
from discord import ui

import bot_config
from utils.color_utils import better_color, hex_to_int, normalize_hex
from utils.embeds import create_embed, team_thumbnail
from utils.team_api import TeamIdentity

logger = logging.getLogger("TeamSetup")

HEX_FORMATS = "Accepted formats are **#RRGGBB**, **RRGGBB**, **#RGB**, and **RGB**"


class ProvisionError(Exception):
    """One of the three team roles could not be created."""


class InvalidTransition(Exception):
    pass


class CustomColorAbandoned(Exception):
    """Too many invalid hex codes were sent during the custom color prompt."""


class SetupState(enum.Enum):
    PRESENTED = "presented"
    CUSTOM_PROMPT = "custom_prompt"
    COLOR_COMMITTED = "color_committed"
    CANCELLED = "cancelled"
    FAILED = "failed"


TRANSITIONS = {
    SetupState.PRESENTED: frozenset({
        SetupState.COLOR_COMMITTED,
        SetupState.CUSTOM_PROMPT,
        SetupState.CANCELLED,
        SetupState.FAILED,
    }),
    SetupState.CUSTOM_PROMPT: frozenset({
        SetupState.COLOR_COMMITTED,
        SetupState.FAILED,
    }),
}

TERMINAL_STATES = frozenset({
    SetupState.COLOR_COMMITTED,
    SetupState.CANCELLED,
    SetupState.FAILED,
})


@dataclass
class RoleSet:
    team_role: discord.Role
    primary_color_role: discord.Role
    secondary_color_role: discord.Role

    def __iter__(self):
        yield self.team_role
        yield self.primary_color_role
        yield self.secondary_color_role

    def color_role(self, choice):
        if choice == "primary":
            return self.primary_color_role
        return self.secondary_color_role


@dataclass
class SetupSession:
    """Everything one /setup run needs, from role creation to its final state."""
    interaction: discord.Interaction
    member: discord.Member
    team_number: int
    nickname: str
    roles: RoleSet
    state: SetupState = SetupState.PRESENTED
    started_at: datetime = field(default_factory=discord.utils.utcnow)
    deleted_role_ids: set = field(default_factory=set)
    rejected_messages: list = field(default_factory=list)

    @property
    def channel(self):
        return self.interaction.channel

    @property
    def is_terminal(self):
        return self.state in TERMINAL_STATES

    def transition(self, new_state: SetupState):
        if new_state not in TRANSITIONS.get(self.state, frozenset()):
            raise InvalidTransition(f"{self.state.name} -> {new_state.name}")
        logger.info(f"Team {self.team_number} setup for {self.member}: {self.state.name} -> {new_state.name}")
        self.state = new_state

    def live_roles(self):
        return [role for role in self.roles if role.id not in self.deleted_role_ids]


# --- Role Provisioning ---

def find_team_role(guild: discord.Guild, team_number: int) -> Optional[discord.Role]:
    prefix = f"{team_number} |"
    return discord.utils.find(lambda role: role.name.startswith(prefix), guild.roles)


async def delete_role(role, reason) -> bool:
    try:
        await role.delete(reason=reason)
        return True
    except discord.HTTPException as e:
        logger.error(f"Failed to delete role {role.name}: {e}")
        return False


async def create_roles(guild: discord.Guild, identity: TeamIdentity) -> RoleSet:
    """
    Creates the team role plus one role per team color.

    If any creation fails the roles made so far are deleted again and
    ProvisionError is raised.
    """
    base_name = f"{identity.team_number} | {identity.team_name}"
    requests = [
        {'name': base_name},
        {'name': f"{base_name} Primary", 'color': better_color(identity.primary_color)},
        {'name': f"{base_name} Secondary", 'color': better_color(identity.secondary_color)},
    ]

    created = []
    try:
        for kwargs in requests:
            created.append(await guild.create_role(reason="Team setup", **kwargs))
    except discord.HTTPException as e:
        logger.error(f"Error creating roles for team {identity.team_number}: {e}")
        for role in created:
            await delete_role(role, "Rolling back partial team setup")
        raise ProvisionError(f"Could not create roles for team {identity.team_number}") from e

    logger.info(f"Created roles for {base_name} in {guild.name}")
    return RoleSet(*created)


async def set_nickname(member: discord.Member, nickname, team_number):
    try:
        await member.edit(nick=f"{nickname} | {team_number}")
    except discord.Forbidden:
        logger.warning(f"Error setting nickname for {member}. Most likely a permissions issue")
    except discord.HTTPException as e:
        logger.warning(f"Error setting nickname for {member}: {e}")


# --- Presentation ---

class TeamColorView(ui.View):
    """Four buttons; the first click by the requester wins."""

    def __init__(self, author_id: int):
        super().__init__(timeout=None)
        self.author_id = author_id
        self.choice: Optional[str] = None
        self.selected = asyncio.Event()

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        if interaction.user.id != self.author_id:
            await interaction.response.send_message(
                "Only the person who ran /setup can pick this color.",
                ephemeral=True
            )
            return False
        return True

    async def select(self, interaction: discord.Interaction, choice: str):
        if self.selected.is_set():
            return
        self.choice = choice
        self.selected.set()
        self.stop()
        try:
            await interaction.response.defer()
        except discord.HTTPException as e:
            logger.warning(f"Could not acknowledge '{choice}' click: {e}")

    async def wait_for_choice(self, timeout) -> str:
        try:
            await asyncio.wait_for(self.selected.wait(), timeout=timeout)
        finally:
            self.stop()
        return self.choice

    @ui.button(label="Primary", style=discord.ButtonStyle.success, custom_id="primary")
    async def primary_button(self, interaction: discord.Interaction, button: ui.Button):
        await self.select(interaction, "primary")

    @ui.button(label="Secondary", style=discord.ButtonStyle.primary, custom_id="secondary")
    async def secondary_button(self, interaction: discord.Interaction, button: ui.Button):
        await self.select(interaction, "secondary")

    @ui.button(label="Custom", style=discord.ButtonStyle.secondary, custom_id="custom")
    async def custom_button(self, interaction: discord.Interaction, button: ui.Button):
        await self.select(interaction, "custom")

    @ui.button(label="Cancel", style=discord.ButtonStyle.danger, custom_id="cancel")
    async def cancel_button(self, interaction: discord.Interaction, button: ui.Button):
        await self.select(interaction, "cancel")


def build_setup_embed(roles: RoleSet, team_number: int) -> discord.Embed:
    return create_embed(
        title="Team Assignment",
        description=(
            f"Welcome {roles.team_role.mention}!\n"
            f"You are the first of your team to join {bot_config.SERVER_NAME}"
        ),
        color=roles.primary_color_role.color,
        fields=[{
            'name': "Select Color:",
            'value': f"{roles.primary_color_role.mention}\n{roles.secondary_color_role.mention}\nA Custom Hex?",
        }],
        thumbnail_url=team_thumbnail(team_number),
    )


def build_setup_message(roles: RoleSet, team_number: int, author_id: int):
    return build_setup_embed(roles, team_number), TeamColorView(author_id)


def build_existing_team_embed(role: discord.Role, member: discord.Member, team_number: int) -> discord.Embed:
    teammates = [m.mention for m in role.members if m.id != member.id]

    # Embed field values are capped at 1024 characters
    listing = ""
    for index, mention in enumerate(teammates):
        line = f"{mention}\n"
        if len(listing) + len(line) > 1000:
            listing += f"...and {len(teammates) - index} more"
            break
        listing += line

    return create_embed(
        title="Team Assignment",
        description=f"Added you to {role.mention}, {member.mention}",
        color=role.color,
        fields=[{
            'name': "Others on your team in the server:",
            'value': listing.strip() or "You're the first one!",
        }],
        thumbnail_url=team_thumbnail(team_number),
    )


# --- Flow Controller ---

class TeamSetupFlow:
    def __init__(self, client: discord.Client, session: SetupSession, view: TeamColorView,
                 timeout=bot_config.SETUP_TIMEOUT_SECONDS,
                 notice_delay=bot_config.NOTICE_DELETE_DELAY_SECONDS,
                 max_attempts=bot_config.CUSTOM_COLOR_MAX_ATTEMPTS):
        self.client = client
        self.session = session
        self.view = view
        self.timeout = timeout
        self.notice_delay = notice_delay
        self.max_attempts = max_attempts

    async def run(self) -> SetupState:
        session = self.session
        try:
            choice = await self.view.wait_for_choice(self.timeout)
            if choice in ("primary", "secondary"):
                await self.commit_color(choice)
            elif choice == "custom":
                await self.custom_color()
            else:
                await self.cancel()
        except (asyncio.TimeoutError, discord.HTTPException, CustomColorAbandoned) as e:
            if session.is_terminal:
                logger.error(f"Team {session.team_number} setup errored after finishing as {session.state.name}: {e!r}")
            else:
                logger.warning(f"Team {session.team_number} setup failed in {session.state.name}: {e!r}")
                await self.fail()
        except Exception:
            logger.exception(f"Unexpected error during team {session.team_number} setup")
            if not session.is_terminal:
                await self.fail()
            raise
        return session.state

    async def _delete_role(self, role, reason):
        if role.id in self.session.deleted_role_ids:
            return
        if await delete_role(role, reason):
            self.session.deleted_role_ids.add(role.id)

    async def _delete_message(self, message):
        try:
            await message.delete()
        except discord.HTTPException as e:
            logger.warning(f"Could not delete message {message.id}: {e}")

    async def _edit(self, embed):
        return await self.session.interaction.edit_original_response(content=None, embed=embed, view=None)

    def _thumbnail(self):
        return team_thumbnail(self.session.team_number)

    async def commit_color(self, choice):
        session = self.session
        roles = session.roles

        # A failed color edit still counts as a failed setup
        color = roles.color_role(choice).color
        await roles.team_role.edit(color=color)
        session.transition(SetupState.COLOR_COMMITTED)

        await self._delete_role(roles.primary_color_role, "Team color chosen")
        await self._delete_role(roles.secondary_color_role, "Team color chosen")

        await session.member.add_roles(roles.team_role)
        await set_nickname(session.member, session.nickname, session.team_number)

        embed = create_embed(
            title="Team Assignment",
            description=f"Added you to {roles.team_role.mention}, {session.member.mention}",
            color=color,
            thumbnail_url=self._thumbnail(),
        )
        await self._edit(embed)

    def _custom_embed(self, color, field_name, field_value):
        return create_embed(
            title="Custom Color",
            description=(
                "Please enter a hex code for the color you\n"
                f"would like to use for {self.session.roles.team_role.mention}"
            ),
            color=color,
            fields=[{'name': field_name, 'value': field_value}],
            thumbnail_url=self._thumbnail(),
        )

    def _is_requester_message(self, message):
        return (message.author.id == self.session.member.id
                and message.channel.id == self.session.channel.id)

    async def custom_color(self):
        session = self.session
        session.transition(SetupState.CUSTOM_PROMPT)
        roles = session.roles

        await self._delete_role(roles.primary_color_role, "Custom team color requested")
        await self._delete_role(roles.secondary_color_role, "Custom team color requested")

        await self._edit(self._custom_embed(roles.team_role.color, "Formatting:", HEX_FORMATS))

        while True:
            message = await self.client.wait_for('message', check=self._is_requester_message, timeout=self.timeout)
            digits = normalize_hex(message.content)
            if digits:
                break

            session.rejected_messages.append(message)
            rejections = len(session.rejected_messages)
            if self.max_attempts and rejections >= self.max_attempts:
                raise CustomColorAbandoned(f"{rejections} invalid hex codes")

            await self._edit(self._custom_embed(
                roles.team_role.color,
                f"**Invalid hex code, please try again ({rejections})**",
                HEX_FORMATS,
            ))

        color = hex_to_int(digits)
        await roles.team_role.edit(color=color)
        session.transition(SetupState.COLOR_COMMITTED)

        await self._edit(self._custom_embed(
            color,
            "Role Assignment",
            f"Added you to {roles.team_role.mention}, {session.member.mention}",
        ))

        await self._delete_message(message)
        for rejected in session.rejected_messages:
            await self._delete_message(rejected)

        await session.member.add_roles(roles.team_role)
        await set_nickname(session.member, session.nickname, session.team_number)

    async def cancel(self):
        session = self.session
        session.transition(SetupState.CANCELLED)
        for role in session.live_roles():
            await self._delete_role(role, "Team setup cancelled")

        embed = create_embed(
            title="Operation Cancelled",
            description="Run /setup to try again",
            color=bot_config.ERROR_COLOR,
            thumbnail_url=self._thumbnail(),
        )
        message = await self._edit(embed)
        await message.delete(delay=self.notice_delay)

    async def fail(self):
        session = self.session
        session.transition(SetupState.FAILED)
        for role in session.live_roles():
            await self._delete_role(role, "An error occurred during setup")

        embed = create_embed(
            title="Something went wrong",
            description="Perhaps a timeout? Run /setup to try again",
            color=bot_config.ERROR_COLOR,
            thumbnail_url=self._thumbnail(),
        )
        try:
            message = await self._edit(embed)
            await message.delete(delay=self.notice_delay)
        except discord.HTTPException as e:
            logger.error(f"Could not post setup error notice for team {session.team_number}: {e}")
