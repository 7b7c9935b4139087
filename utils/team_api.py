import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import aiohttp

import bot_config

logger = logging.getLogger("TeamLookup")


class TeamNotFoundError(Exception):
    """Raised when The Blue Alliance or FRC Colors has nothing usable for a team."""

    def __init__(self, team_number):
        super().__init__(f"Team data or colors not found for team {team_number}")
        self.team_number = team_number


@dataclass(frozen=True)
class TeamIdentity:
    team_number: int
    team_name: str
    primary_color: Optional[str]
    secondary_color: Optional[str]


class TeamLookupClient:
    def __init__(self, session: aiohttp.ClientSession, tba_key: Optional[str],
                 tba_base_url=bot_config.TBA_BASE_URL,
                 colors_base_url=bot_config.FRC_COLORS_BASE_URL):
        self.session = session
        self.tba_key = tba_key or ""
        self.tba_base_url = tba_base_url.rstrip('/')
        self.colors_base_url = colors_base_url.rstrip('/')
        self.timeout = aiohttp.ClientTimeout(total=bot_config.HTTP_TIMEOUT_SECONDS)

    async def _get_json(self, url, headers=None) -> dict:
        async with self.session.get(url, headers=headers, timeout=self.timeout) as response:
            if response.status != 200:
                logger.warning(f"Lookup failed for {url}: HTTP {response.status}")
                return {}
            data = await response.json()
            return data if isinstance(data, dict) else {}

    async def fetch_team_profile(self, team_number: int) -> dict:
        url = f"{self.tba_base_url}/team/frc{team_number}/simple"
        headers = {
            "accept": "application/json",
            "X-TBA-Auth-Key": self.tba_key,
        }
        return await self._get_json(url, headers=headers)

    async def fetch_team_colors(self, team_number: int) -> dict:
        url = f"{self.colors_base_url}/team/{team_number}"
        return await self._get_json(url)

    async def fetch_team_identity(self, team_number: int) -> TeamIdentity:
        """Looks up the team name and colors. Both lookups run concurrently."""
        profile, colors = await asyncio.gather(
            self.fetch_team_profile(team_number),
            self.fetch_team_colors(team_number),
        )

        team_name = profile.get('nickname')
        primary = colors.get('primaryHex')

        # Secondary is not checked; FRC Colors always pairs it with a primary
        if not team_name or not primary:
            raise TeamNotFoundError(team_number)

        logger.info(f"Fetched team {team_number}: {team_name} ({primary}/{colors.get('secondaryHex')})")
        return TeamIdentity(
            team_number=team_number,
            team_name=team_name,
            primary_color=primary,
            secondary_color=colors.get('secondaryHex'),
        )
