import asyncio
import os
import sys

import aiohttp
from dotenv import load_dotenv

# Add parent directory to sys.path to allow imports from utils folder
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
load_dotenv(os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), '.env'))

from utils.color_utils import better_color
from utils.team_api import TeamLookupClient, TeamNotFoundError


async def check_team(team_number):
    tba_key = os.getenv('TBA_API_KEY')
    if not tba_key:
        print("WARNING: TBA_API_KEY not set, The Blue Alliance will answer 401.")

    async with aiohttp.ClientSession() as session:
        client = TeamLookupClient(session, tba_key)

        profile = await client.fetch_team_profile(team_number)
        print(f"[TBA] {profile or 'no data'}")

        colors = await client.fetch_team_colors(team_number)
        print(f"[FRC Colors] {colors or 'no data'}")

        try:
            identity = await client.fetch_team_identity(team_number)
        except TeamNotFoundError as e:
            print(f"Result: {e}")
            return

        print(f"Result: {identity.team_number} | {identity.team_name}")
        print(f"  Primary role color:   #{better_color(identity.primary_color):06x}")
        print(f"  Secondary role color: #{better_color(identity.secondary_color):06x}")


def main():
    if len(sys.argv) != 2 or not sys.argv[1].isdigit():
        print("Usage: python scripts/debug_team_lookup.py <team_number>")
        sys.exit(1)

    print("--- Team Lookup Debug Tool ---")
    try:
        asyncio.run(check_team(int(sys.argv[1])))
    except aiohttp.ClientError as e:
        print(f"Connection error: {e}")


if __name__ == "__main__":
    main()
