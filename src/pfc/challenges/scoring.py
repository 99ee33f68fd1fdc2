"""Winner determination and end-value computation.

Pure functions. The settlement engine feeds them oracle returns and
persists what they produce. The win decision uses return percentages
directly; end values are display-only.
"""

from __future__ import annotations

from dataclasses import dataclass

from pfc.challenges.constants import INDEX_WINNER, TYPE_VS_INDEX

OUTCOME_WON = "won"
OUTCOME_LOST = "lost"
OUTCOME_DRAW = "draw"


@dataclass(frozen=True)
class ChallengeOutcome:
    winner_id: str | None
    xp_awarded: int
    challenger_end_value: float
    opponent_end_value: float

    @property
    def is_draw(self) -> bool:
        return self.winner_id is None


def stake_for(challenge_type: str, xp_vs_index: int, xp_vs_user: int) -> int:
    """XP at risk for a challenge type."""
    return xp_vs_index if challenge_type == TYPE_VS_INDEX else xp_vs_user


def end_value(start_value: float, return_percent: float) -> float:
    """Value of a stake after a percentage return."""
    return start_value * (1 + return_percent / 100)


def determine_outcome(
    challenge_type: str,
    challenger_id: str,
    opponent_id: str | None,
    challenger_return: float,
    opponent_return: float,
    stake: int,
    challenger_start_value: float,
    opponent_start_value: float,
) -> ChallengeOutcome:
    """Score a challenge. Strictly greater return wins; equal returns draw."""
    if challenger_return > opponent_return:
        winner_id: str | None = challenger_id
        xp_awarded = stake
    elif opponent_return > challenger_return:
        winner_id = INDEX_WINNER if challenge_type == TYPE_VS_INDEX else opponent_id
        xp_awarded = stake
    else:
        winner_id = None
        xp_awarded = 0

    return ChallengeOutcome(
        winner_id=winner_id,
        xp_awarded=xp_awarded,
        challenger_end_value=end_value(challenger_start_value, challenger_return),
        opponent_end_value=end_value(opponent_start_value, opponent_return),
    )


def outcome_for(user_id: str, winner_id: str | None) -> str:
    """Outcome from one participant's point of view."""
    if winner_id is None:
        return OUTCOME_DRAW
    return OUTCOME_WON if winner_id == user_id else OUTCOME_LOST
