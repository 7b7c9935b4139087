import unittest
import asyncio
import itertools
import os
import sys
from unittest.mock import MagicMock, AsyncMock

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import discord

from bots.team_setup import (
    CustomColorAbandoned,
    InvalidTransition,
    ProvisionError,
    RoleSet,
    SetupSession,
    SetupState,
    TeamColorView,
    TeamSetupFlow,
    build_existing_team_embed,
    build_setup_message,
    create_roles,
    find_team_role,
)
from utils.team_api import TeamIdentity

REQUESTER_ID = 42
CHANNEL_ID = 55

_role_ids = itertools.count(1000)


def http_error(status=500):
    response = MagicMock()
    response.status = status
    response.reason = "Error"
    return discord.HTTPException(response, "boom")


def make_role(name, color=0, role_id=None):
    role = MagicMock()
    role.id = role_id if role_id is not None else next(_role_ids)
    role.name = name
    role.color = discord.Colour(color)
    role.mention = f"<@&{role.id}>"
    role.delete = AsyncMock()
    role.edit = AsyncMock()
    return role


def make_guild(roles=()):
    guild = MagicMock()
    guild.name = "FRCSD"
    guild.roles = list(roles)
    guild.create_role = AsyncMock(side_effect=lambda **kwargs: make_role(kwargs['name'], kwargs.get('color', 0)))
    return guild


def make_role_set():
    return RoleSet(
        make_role("254 | Cheesy Poofs"),
        make_role("254 | Cheesy Poofs Primary", 0x0066B3),
        make_role("254 | Cheesy Poofs Secondary", 0xFFFFFF),
    )


def make_member(member_id=REQUESTER_ID):
    member = MagicMock()
    member.id = member_id
    member.mention = f"<@{member_id}>"
    member.add_roles = AsyncMock()
    member.edit = AsyncMock()
    return member


def make_session(roles):
    notice = MagicMock()
    notice.delete = AsyncMock()
    interaction = MagicMock()
    interaction.channel.id = CHANNEL_ID
    interaction.edit_original_response = AsyncMock(return_value=notice)
    return SetupSession(
        interaction=interaction,
        member=make_member(),
        team_number=254,
        nickname="Alex",
        roles=roles,
    )


def make_message(content, author_id=REQUESTER_ID, channel_id=CHANNEL_ID):
    message = MagicMock()
    message.content = content
    message.author.id = author_id
    message.channel.id = channel_id
    message.delete = AsyncMock()
    return message


def click(user_id=REQUESTER_ID):
    interaction = MagicMock()
    interaction.user.id = user_id
    interaction.response.defer = AsyncMock()
    interaction.response.send_message = AsyncMock()
    return interaction


def edited_embeds(session):
    return [c.kwargs['embed'] for c in session.interaction.edit_original_response.call_args_list]


class TestRoleProvisioning(unittest.IsolatedAsyncioTestCase):
    async def test_creates_three_named_roles(self):
        guild = make_guild()
        identity = TeamIdentity(254, "Cheesy Poofs", "#0066B3", "#FFFFFF")

        roles = await create_roles(guild, identity)

        self.assertEqual(roles.team_role.name, "254 | Cheesy Poofs")
        self.assertEqual(roles.primary_color_role.name, "254 | Cheesy Poofs Primary")
        self.assertEqual(roles.secondary_color_role.name, "254 | Cheesy Poofs Secondary")
        self.assertEqual(roles.primary_color_role.color, discord.Colour(0x0066B3))
        self.assertEqual(roles.secondary_color_role.color, discord.Colour(0xFFFFFF))

    async def test_black_is_made_visible(self):
        guild = make_guild()
        roles = await create_roles(guild, TeamIdentity(1, "Black Team", "#000000", None))
        self.assertNotEqual(roles.primary_color_role.color.value, 0)
        self.assertNotEqual(roles.secondary_color_role.color.value, 0)

    async def test_partial_failure_rolls_back(self):
        first, second = make_role("1 | A"), make_role("1 | A Primary")
        guild = make_guild()
        guild.create_role = AsyncMock(side_effect=[first, second, http_error()])

        with self.assertRaises(ProvisionError):
            await create_roles(guild, TeamIdentity(1, "A", "#123456", "#654321"))

        first.delete.assert_awaited_once()
        second.delete.assert_awaited_once()

    def test_find_team_role(self):
        match = make_role("254 | Cheesy Poofs")
        guild = make_guild([make_role("2540 | Other"), make_role("Moderator"), match])
        self.assertIs(find_team_role(guild, 254), match)
        self.assertIsNone(find_team_role(guild, 1678))


class TestPresentation(unittest.IsolatedAsyncioTestCase):
    async def test_setup_message(self):
        roles = make_role_set()
        embed, view = build_setup_message(roles, 254, REQUESTER_ID)

        self.assertEqual(embed.title, "Team Assignment")
        self.assertIn(roles.team_role.mention, embed.description)
        self.assertIn(roles.primary_color_role.mention, embed.fields[0].value)
        self.assertIn(roles.secondary_color_role.mention, embed.fields[0].value)
        self.assertIn("frc254", embed.thumbnail.url)
        self.assertEqual([item.custom_id for item in view.children], ["primary", "secondary", "custom", "cancel"])

    async def test_other_users_cannot_pick(self):
        view = TeamColorView(REQUESTER_ID)
        stranger = click(user_id=7)

        self.assertFalse(await view.interaction_check(stranger))
        stranger.response.send_message.assert_awaited_once()
        self.assertFalse(view.selected.is_set())
        self.assertTrue(await view.interaction_check(click()))

    async def test_first_click_wins(self):
        view = TeamColorView(REQUESTER_ID)
        await view.select(click(), "secondary")
        await view.select(click(), "cancel")
        self.assertEqual(await view.wait_for_choice(1), "secondary")

    async def test_existing_team_embed(self):
        role = make_role("254 | Cheesy Poofs", 0x0066B3)
        requester, teammate = make_member(), make_member(7)
        role.members = [requester, teammate]

        embed = build_existing_team_embed(role, requester, 254)
        self.assertEqual(embed.fields[0].value, "<@7>")

        role.members = [requester]
        embed = build_existing_team_embed(role, requester, 254)
        self.assertEqual(embed.fields[0].value, "You're the first one!")


class TestSetupFlow(unittest.IsolatedAsyncioTestCase):
    async def start_flow(self, choice=None, client=None, **kwargs):
        roles = make_role_set()
        session = make_session(roles)
        view = TeamColorView(REQUESTER_ID)
        if choice:
            await view.select(click(), choice)
        flow = TeamSetupFlow(client or MagicMock(), session, view, **kwargs)
        state = await flow.run()
        return state, session, roles

    async def test_primary_commits_color(self):
        state, session, roles = await self.start_flow("primary")

        self.assertEqual(state, SetupState.COLOR_COMMITTED)
        roles.team_role.edit.assert_awaited_once_with(color=discord.Colour(0x0066B3))
        roles.primary_color_role.delete.assert_awaited_once()
        roles.secondary_color_role.delete.assert_awaited_once()
        roles.team_role.delete.assert_not_awaited()
        session.member.add_roles.assert_awaited_once_with(roles.team_role)
        session.member.edit.assert_awaited_once_with(nick="Alex | 254")
        self.assertEqual(edited_embeds(session)[-1].title, "Team Assignment")

    async def test_secondary_commits_color(self):
        state, _, roles = await self.start_flow("secondary")
        self.assertEqual(state, SetupState.COLOR_COMMITTED)
        roles.team_role.edit.assert_awaited_once_with(color=discord.Colour(0xFFFFFF))

    async def test_nickname_failure_is_not_fatal(self):
        roles = make_role_set()
        session = make_session(roles)
        session.member.edit = AsyncMock(side_effect=discord.Forbidden(MagicMock(status=403, reason="Forbidden"), "nope"))
        view = TeamColorView(REQUESTER_ID)
        await view.select(click(), "primary")

        state = await TeamSetupFlow(MagicMock(), session, view).run()

        self.assertEqual(state, SetupState.COLOR_COMMITTED)
        session.member.add_roles.assert_awaited_once_with(roles.team_role)
        roles.team_role.delete.assert_not_awaited()

    async def test_error_after_commit_does_not_clean_up(self):
        roles = make_role_set()
        session = make_session(roles)
        session.member.add_roles = AsyncMock(side_effect=http_error())
        view = TeamColorView(REQUESTER_ID)
        await view.select(click(), "primary")

        state = await TeamSetupFlow(MagicMock(), session, view).run()

        self.assertEqual(state, SetupState.COLOR_COMMITTED)
        roles.team_role.delete.assert_not_awaited()
        roles.primary_color_role.delete.assert_awaited_once()

    async def test_failed_color_edit_cleans_up(self):
        roles = make_role_set()
        roles.team_role.edit = AsyncMock(side_effect=http_error())
        session = make_session(roles)
        view = TeamColorView(REQUESTER_ID)
        await view.select(click(), "primary")

        state = await TeamSetupFlow(MagicMock(), session, view).run()

        self.assertEqual(state, SetupState.FAILED)
        for role in roles:
            role.delete.assert_awaited_once()
        session.member.add_roles.assert_not_awaited()
        self.assertEqual(edited_embeds(session)[-1].title, "Something went wrong")

    async def test_cancel_deletes_everything(self):
        state, session, roles = await self.start_flow("cancel")

        self.assertEqual(state, SetupState.CANCELLED)
        for role in roles:
            role.delete.assert_awaited_once()
        self.assertEqual(edited_embeds(session)[-1].title, "Operation Cancelled")
        notice = session.interaction.edit_original_response.return_value
        notice.delete.assert_awaited_once_with(delay=10)

    async def test_unknown_choice_cancels(self):
        state, _, roles = await self.start_flow("bogus")
        self.assertEqual(state, SetupState.CANCELLED)
        for role in roles:
            role.delete.assert_awaited_once()

    async def test_timeout_fails_and_cleans_up(self):
        state, session, roles = await self.start_flow(timeout=0.01)

        self.assertEqual(state, SetupState.FAILED)
        for role in roles:
            role.delete.assert_awaited_once()
        self.assertEqual(edited_embeds(session)[-1].title, "Something went wrong")
        notice = session.interaction.edit_original_response.return_value
        notice.delete.assert_awaited_once_with(delay=10)

    async def test_cleanup_continues_after_delete_failure(self):
        roles = make_role_set()
        roles.team_role.delete = AsyncMock(side_effect=http_error())
        session = make_session(roles)

        state = await TeamSetupFlow(MagicMock(), session, TeamColorView(REQUESTER_ID), timeout=0.01).run()

        self.assertEqual(state, SetupState.FAILED)
        roles.primary_color_role.delete.assert_awaited_once()
        roles.secondary_color_role.delete.assert_awaited_once()

    async def test_custom_color_retries_then_commits(self):
        bad = make_message("not a color")
        good = make_message("#1a2")
        client = MagicMock()
        client.wait_for = AsyncMock(side_effect=[bad, good])

        state, session, roles = await self.start_flow("custom", client=client)

        self.assertEqual(state, SetupState.COLOR_COMMITTED)
        self.assertEqual(len(session.rejected_messages), 1)
        roles.primary_color_role.delete.assert_awaited_once()
        roles.secondary_color_role.delete.assert_awaited_once()
        roles.team_role.delete.assert_not_awaited()
        roles.team_role.edit.assert_awaited_once_with(color=0x11AA22)
        bad.delete.assert_awaited_once()
        good.delete.assert_awaited_once()
        session.member.add_roles.assert_awaited_once_with(roles.team_role)
        session.member.edit.assert_awaited_once_with(nick="Alex | 254")

        field_names = [embed.fields[0].name for embed in edited_embeds(session)]
        self.assertIn("**Invalid hex code, please try again (1)**", field_names)

    async def test_custom_color_only_listens_to_requester(self):
        client = MagicMock()
        client.wait_for = AsyncMock(return_value=make_message("abc"))

        await self.start_flow("custom", client=client)

        check = client.wait_for.call_args.kwargs['check']
        self.assertTrue(check(make_message("abc")))
        self.assertFalse(check(make_message("abc", author_id=7)))
        self.assertFalse(check(make_message("abc", channel_id=99)))

    async def test_custom_color_timeout_fails(self):
        bad = make_message("nope")
        client = MagicMock()
        client.wait_for = AsyncMock(side_effect=[bad, asyncio.TimeoutError()])

        state, session, roles = await self.start_flow("custom", client=client)

        self.assertEqual(state, SetupState.FAILED)
        for role in roles:
            role.delete.assert_awaited_once()
        # Rejected messages stay behind when the prompt times out
        bad.delete.assert_not_awaited()

    async def test_failed_custom_color_edit_cleans_up(self):
        roles = make_role_set()
        roles.team_role.edit = AsyncMock(side_effect=http_error())
        session = make_session(roles)
        view = TeamColorView(REQUESTER_ID)
        await view.select(click(), "custom")
        client = MagicMock()
        client.wait_for = AsyncMock(return_value=make_message("#123456"))

        state = await TeamSetupFlow(client, session, view).run()

        self.assertEqual(state, SetupState.FAILED)
        for role in roles:
            role.delete.assert_awaited_once()
        session.member.add_roles.assert_not_awaited()
        self.assertEqual(edited_embeds(session)[-1].title, "Something went wrong")

    async def test_custom_color_attempt_limit(self):
        client = MagicMock()
        client.wait_for = AsyncMock(side_effect=[make_message("nope"), make_message("still no")])

        state, _, roles = await self.start_flow("custom", client=client, max_attempts=2)

        self.assertEqual(state, SetupState.FAILED)
        roles.team_role.delete.assert_awaited_once()


class TestSetupSession(unittest.TestCase):
    def test_terminal_states_are_final(self):
        session = make_session(make_role_set())
        session.transition(SetupState.CANCELLED)
        self.assertTrue(session.is_terminal)
        with self.assertRaises(InvalidTransition):
            session.transition(SetupState.FAILED)

    def test_custom_prompt_cannot_cancel(self):
        session = make_session(make_role_set())
        session.transition(SetupState.CUSTOM_PROMPT)
        with self.assertRaises(InvalidTransition):
            session.transition(SetupState.CANCELLED)

    def test_attempt_limit_error_is_an_exception(self):
        self.assertTrue(issubclass(CustomColorAbandoned, Exception))


if __name__ == '__main__':
    unittest.main()
