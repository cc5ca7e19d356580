"""
Margin health checks.

The margin ratio is account value over margin in use. A ratio below the
configured threshold means the account is close to forced liquidation by
the venue, so the run liquidates on its own terms first.
"""

import logging
import math
from dataclasses import dataclass

from gridrisk.errors import MarginInsufficient

logger = logging.getLogger(__name__)

# Reported when nothing is at risk (no margin in use, or an unusable figure)
SAFE_MARGIN_RATIO = 10.0

# Requirement assumed when the venue reports notional but no margin used
ASSUMED_MARGIN_REQUIREMENT = 0.1


@dataclass(frozen=True)
class MarginSummary:
    """Account margin figures as reported by the venue."""
    account_value: float
    total_margin_used: float
    total_position_notional: float = 0.0


def calculate_margin_ratio(summary: MarginSummary) -> float:
    """
    Account value over margin used.

    Falls back to an assumed 10% requirement on position notional when no
    margin is reported, and to SAFE_MARGIN_RATIO with no exposure at all
    or when the result is not finite.
    """
    if summary.total_margin_used > 0:
        ratio = summary.account_value / summary.total_margin_used
    elif summary.total_position_notional > 0:
        logger.warning('No margin used reported, estimating from position notional')
        ratio = summary.account_value / (summary.total_position_notional * ASSUMED_MARGIN_REQUIREMENT)
    else:
        return SAFE_MARGIN_RATIO

    if not math.isfinite(ratio):
        logger.warning('Margin ratio %s is not finite, using safe value', ratio)
        return SAFE_MARGIN_RATIO
    return ratio


def check_margin_ratio(ratio: float, threshold: float) -> float:
    """
    Validate a margin ratio against its floor.

    Returns:
        The ratio, or SAFE_MARGIN_RATIO if it is not finite

    Raises:
        MarginInsufficient: If the ratio is negative or below threshold
    """
    if not math.isfinite(ratio):
        logger.warning('Margin ratio %s is not finite, using safe value', ratio)
        return SAFE_MARGIN_RATIO
    if ratio < 0:
        raise MarginInsufficient(f"negative margin ratio {ratio:.2%}, account data is inconsistent")
    if ratio < threshold:
        raise MarginInsufficient(f"margin ratio {ratio:.2%} below threshold {threshold:.2%}")

    if ratio > threshold * 3:
        health = 'very safe'
    elif ratio > threshold * 2:
        health = 'safe'
    elif ratio > threshold * 1.5:
        health = 'fair'
    else:
        health = 'watch'
    logger.info('Margin ratio %.2f%% (%s)', ratio * 100, health)
    return ratio
