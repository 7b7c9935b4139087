import re
from typing import Optional, Union

import bot_config

HEX_PATTERN = re.compile(r'#?([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})')


def hex_to_int(value: str) -> int:
    return int(value.lstrip('#'), 16)


def better_color(color: Union[str, int, None]) -> int:
    """
    Returns a color Discord will actually render.

    Pure black (and a missing color) comes back as DEFAULT_ROLE_COLOR since
    Discord reads 0 as "no color".
    """
    if color is None or color == "":
        return bot_config.DEFAULT_ROLE_COLOR

    value = color if isinstance(color, int) else hex_to_int(color)
    if value == 0:
        return bot_config.DEFAULT_ROLE_COLOR
    return value


def normalize_hex(text: str) -> Optional[str]:
    """
    Finds the first hex color in text and returns it as 6 lowercase digits.

    Accepts #RRGGBB, RRGGBB, #RGB and RGB anywhere in the text. Short form is
    expanded by doubling each digit ("1a2" -> "11aa22"). Returns None if no
    hex color is found.
    """
    match = HEX_PATTERN.search(text or "")
    if not match:
        return None

    digits = match.group(1)
    if len(digits) == 3:
        digits = "".join(char * 2 for char in digits)
    return digits.lower()
