"""
Prompt rendering helpers shared by the pattern and knowledge stores
"""

from typing import List, Optional

from .models import MS_PER_DAY

BOX_WIDTH = 62
RULE = "═" * (BOX_WIDTH + 1)

AGING_AFTER_DAYS = 21
STALE_AFTER_DAYS = 60

# Zero-width space keeps a literal ``` from closing the surrounding fence
ESCAPED_FENCE = "`\u200b``"


def box_header(title: str) -> str:
    """Three-line double-ruled box around title"""
    top = "╔" + "═" * BOX_WIDTH + "╗"
    middle = "║" + f"  {title}".ljust(BOX_WIDTH) + "║"
    bottom = "╚" + "═" * BOX_WIDTH + "╝"
    return f"{top}\n{middle}\n{bottom}\n"


def render_pattern_block(title: str, intro: List[str], lines: List[str]) -> str:
    """Banner, intro sentences, one line per pattern, closing rule"""
    text = "\n\n" + box_header(title) + "\n"
    if intro:
        text += "\n".join(intro) + "\n\n"
    text += "\n".join(lines)
    text += "\n\n" + RULE + "\n"
    return text


def relative_age(timestamp: Optional[int], now: int) -> str:
    """Human-relative age: 'just now', '12m ago', '3h ago', '2d ago', '1w ago', '4mo ago'"""
    if not timestamp:
        return ""

    diff_ms = now - timestamp
    diff_mins = diff_ms // 60000
    diff_hours = diff_ms // 3600000
    diff_days = diff_ms // MS_PER_DAY

    if diff_mins < 5:
        return "just now"
    if diff_mins < 60:
        return f"{diff_mins}m ago"
    if diff_hours < 24:
        return f"{diff_hours}h ago"
    if diff_days < 7:
        return f"{diff_days}d ago"
    if diff_days < 30:
        return f"{diff_days // 7}w ago"
    return f"{diff_days // 30}mo ago"


def staleness_badge(created: Optional[int], now: int) -> str:
    if not created:
        return ""
    age_days = (now - created) // MS_PER_DAY
    if age_days > STALE_AFTER_DAYS:
        return " [STALE — verify before using]"
    if age_days > AGING_AFTER_DAYS:
        return " [aging]"
    return ""


def escape_fences(content: str) -> str:
    return content.replace("```", ESCAPED_FENCE)
