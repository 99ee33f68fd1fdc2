"""Challenge leaderboard — aggregate completed challenges per user.

Ranking: wins desc, then win rate desc, then net XP earned desc.
Opponents are only tallied for vs_user challenges; the index has no row.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from pfc.challenges.constants import TYPE_VS_INDEX
from pfc.db.models import Challenge
from pfc.users.directory import UserProfile


@dataclass
class LeaderboardEntry:
    user_id: str
    username: str = ""
    avatar_url: str | None = None
    rank: int = 0
    wins: int = 0
    losses: int = 0
    draws: int = 0
    xp_earned: int = 0
    index_wins: int = 0
    user_wins: int = 0

    @property
    def total_challenges(self) -> int:
        return self.wins + self.losses + self.draws

    @property
    def win_rate(self) -> float:
        total = self.total_challenges
        return (self.wins / total) * 100 if total else 0.0

    def record(self, winner_id: str | None, xp_awarded: int, is_index: bool) -> None:
        if winner_id == self.user_id:
            self.wins += 1
            self.xp_earned += xp_awarded
            if is_index:
                self.index_wins += 1
            else:
                self.user_wins += 1
        elif winner_id is None:
            self.draws += 1
        else:
            self.losses += 1
            self.xp_earned -= xp_awarded


def tally(challenges: Iterable[Challenge]) -> dict[str, LeaderboardEntry]:
    """Per-user stats from completed challenges."""
    stats: dict[str, LeaderboardEntry] = {}
    for c in challenges:
        is_index = c.type == TYPE_VS_INDEX
        xp = c.xp_awarded or 0

        entry = stats.setdefault(c.challenger_id, LeaderboardEntry(user_id=c.challenger_id))
        entry.record(c.winner_id, xp, is_index)

        if not is_index and c.opponent_id:
            entry = stats.setdefault(c.opponent_id, LeaderboardEntry(user_id=c.opponent_id))
            entry.record(c.winner_id, xp, is_index)
    return stats


def build_leaderboard(
    challenges: Iterable[Challenge],
    profiles: dict[str, UserProfile],
    limit: int = 10,
) -> tuple[list[LeaderboardEntry], int]:
    """Rank users. Returns (top `limit` entries, total participants)."""
    entries = []
    for user_id, entry in tally(challenges).items():
        profile = profiles.get(user_id)
        if profile is None:
            continue
        entry.username = profile.username
        entry.avatar_url = profile.avatar_url
        entries.append(entry)

    entries.sort(key=lambda e: (-e.wins, -e.win_rate, -e.xp_earned))
    ranked = entries[:limit]
    for i, entry in enumerate(ranked, start=1):
        entry.rank = i
    return ranked, len(entries)
