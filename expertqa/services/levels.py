# =============================================================================
# Experience Levels
# =============================================================================
# Experts earn XP alongside credits when an answer is accepted. Levels grow
# geometrically:
#
#   xp_for_level(n) = floor(100 * (1.5^(n-1) - 1))
#   level(xp)       = floor(log_1.5(xp / 100 + 1)) + 1
#
#   level:              1    2    3     4     5
#   xp_for_level:       0   50  125   237   406
#   first xp at level:  0   50  125   238   407
#
# The two formulas disagree by one XP where xp_for_level floors a
# fractional threshold; progress then reads 100 until the next point.
# =============================================================================

import math

BASE_XP = 100
GROWTH_FACTOR = 1.5


def calculate_level(xp: int) -> int:
    xp = max(xp, 0)
    level = math.floor(math.log(xp / BASE_XP + 1) / math.log(GROWTH_FACTOR)) + 1
    return max(1, level)


def xp_for_level(level: int) -> int:
    """Total XP at which `level` is reached."""
    return math.floor(BASE_XP * (GROWTH_FACTOR ** (level - 1) - 1))


def calculate_progress_to_next_level(xp: int) -> int:
    """Percentage (0–100) of the way from the current level to the next."""
    xp = max(xp, 0)
    current = calculate_level(xp)
    floor_xp = xp_for_level(current)
    next_xp = xp_for_level(current + 1)
    return min(100, math.floor((xp - floor_xp) / (next_xp - floor_xp) * 100))
