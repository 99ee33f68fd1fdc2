"""Notification types and user-facing challenge messages."""

from __future__ import annotations

from pfc.challenges.scoring import OUTCOME_DRAW, OUTCOME_LOST, OUTCOME_WON

CHALLENGE_RECEIVED = "challenge_received"
CHALLENGE_ACCEPTED = "challenge_accepted"
CHALLENGE_DECLINED = "challenge_declined"
CHALLENGE_WON = "challenge_won"
CHALLENGE_LOST = "challenge_lost"
CHALLENGE_DRAW = "challenge_draw"

RESULT_TYPES = {
    OUTCOME_WON: CHALLENGE_WON,
    OUTCOME_LOST: CHALLENGE_LOST,
    OUTCOME_DRAW: CHALLENGE_DRAW,
}


def received_message(challenger_name: str | None) -> str:
    return f"{challenger_name or 'Someone'} has challenged you to a portfolio battle!"


def accepted_message(opponent_name: str | None) -> str:
    return f"{opponent_name or 'Your opponent'} accepted your challenge! The competition begins now."


def declined_message(opponent_name: str | None) -> str:
    return f"{opponent_name or 'Your opponent'} declined your challenge."


def result_message(outcome: str, counterpart_name: str, xp_amount: int) -> str:
    """Settlement message for one participant."""
    if outcome == OUTCOME_WON:
        return f"You won your challenge against {counterpart_name}! +{xp_amount} XP"
    if outcome == OUTCOME_LOST:
        return f"You lost your challenge against {counterpart_name}. -{xp_amount} XP"
    return f"Your challenge against {counterpart_name} ended in a draw!"
