import asyncio
import os
import discord
from dotenv import load_dotenv
from bots.team_bot import TeamBot

import logging

# Load environment variables
load_dotenv()

# Configure Logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)

# The setup flow logs every state change; keep it verbose
logging.getLogger("TeamSetup").setLevel(logging.DEBUG)

async def run_bot():
    # Setup Intents
    intents = discord.Intents.default()
    intents.members = True  # Required to list teammates and change nicknames
    intents.message_content = True  # Custom hex replies and keyword reactions
    intents.guilds = True

    team_token = os.getenv('TEAM_BOT_TOKEN')
    if not team_token:
        print("Error: TEAM_BOT_TOKEN not found in .env. Exiting.")
        return

    team_bot = TeamBot(intents=intents)

    print("Starting Team Bot...")
    try:
        async with team_bot:
            await team_bot.start(team_token.strip())
    except discord.LoginFailure:
        print("Error: Invalid Token. Please check TEAM_BOT_TOKEN in your .env file.")

def main():
    try:
        asyncio.run(run_bot())
    except KeyboardInterrupt:
        # Handle manual stop (Ctrl+C) gracefully
        print("Stopping bot...")

if __name__ == "__main__":
    main()
