# Bot Configuration

# Team Bot
TEAM_BOT_NICKNAME = "Team Registrar"
SERVER_NAME = "FRCSD"

# Setup Flow
SETUP_TIMEOUT_SECONDS = 120
NOTICE_DELETE_DELAY_SECONDS = 10
CUSTOM_COLOR_MAX_ATTEMPTS = 0 # 0 = keep asking until the wait times out

# Discord treats 0x000000 as "no color", so black roles get this grey instead
DEFAULT_ROLE_COLOR = 0x99AAB5
ERROR_COLOR = 0xFF0000

# External Services
TBA_BASE_URL = "https://www.thebluealliance.com/api/v3"
FRC_COLORS_BASE_URL = "https://api.frc-colors.com/v1"
TEAM_AVATAR_URL = "https://www.thebluealliance.com/avatar/2024/frc{team_number}.png"
HTTP_TIMEOUT_SECONDS = 10

# Reaction Map
ENABLE_KEYWORD_REACTIONS = True
REACTION_MAP_FILE = "reactionMap.json"
GIT_AUTHOR = "Server Admin <ruhmit@ruhmit.com>"
GIT_REMOTE = "origin"
GIT_BRANCH = "main"
