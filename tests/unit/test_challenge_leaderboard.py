"""Unit tests for challenge leaderboard ranking."""

from __future__ import annotations

from pfc.challenges.constants import INDEX_WINNER, TYPE_VS_USER
from pfc.challenges.leaderboard import LeaderboardEntry, build_leaderboard, tally
from pfc.users.directory import UserProfile
from tests.fakes import make_challenge

PROFILES = {uid: UserProfile(uid, uid.title()) for uid in ("alice", "bob", "carol", "dave")}


def _done(challenger, winner, xp, opponent=None):
    if opponent is None:
        return make_challenge(status="completed", challenger_id=challenger, winner_id=winner, xp_awarded=xp)
    return make_challenge(
        status="completed",
        type=TYPE_VS_USER,
        challenger_id=challenger,
        opponent_id=opponent,
        opponent_portfolio_id=f"pf-{opponent}",
        winner_id=winner,
        xp_awarded=xp,
    )


class TestTally:
    """Test per-user aggregation."""

    def test_vs_index_only_counts_challenger(self):
        stats = tally([_done("alice", "alice", 100), _done("alice", INDEX_WINNER, 100)])
        assert set(stats) == {"alice"}
        alice = stats["alice"]
        assert (alice.wins, alice.losses, alice.draws) == (1, 1, 0)
        assert alice.index_wins == 1
        assert alice.xp_earned == 0

    def test_vs_user_counts_both_sides(self):
        stats = tally([_done("alice", "bob", 200, opponent="bob")])
        assert stats["bob"].wins == 1
        assert stats["bob"].user_wins == 1
        assert stats["bob"].xp_earned == 200
        assert stats["alice"].losses == 1
        assert stats["alice"].xp_earned == -200

    def test_draw(self):
        stats = tally([_done("alice", None, 0, opponent="bob")])
        assert stats["alice"].draws == stats["bob"].draws == 1

    def test_win_rate(self):
        entry = LeaderboardEntry(user_id="x", wins=1, losses=2, draws=1)
        assert entry.total_challenges == 4
        assert entry.win_rate == 25.0
        assert LeaderboardEntry(user_id="y").win_rate == 0.0


class TestBuildLeaderboard:
    """Test ranking order and limits."""

    def test_ordering(self):
        """Wins first, then win rate, then XP earned."""
        challenges = [
            # alice: 2 wins, 1 loss
            _done("alice", "alice", 100),
            _done("alice", "alice", 100),
            _done("alice", INDEX_WINNER, 100),
            # bob: 2 wins, 0 losses
            _done("bob", "bob", 100),
            _done("bob", "bob", 100),
            # carol: 1 win (vs_user, 200 xp) over dave
            _done("carol", "carol", 200, opponent="dave"),
        ]

        entries, total = build_leaderboard(challenges, PROFILES)

        assert [e.user_id for e in entries] == ["bob", "alice", "carol", "dave"]
        assert [e.rank for e in entries] == [1, 2, 3, 4]
        assert entries[0].username == "Bob"
        assert total == 4

    def test_xp_breaks_ties(self):
        challenges = [
            _done("alice", "alice", 100),
            _done("carol", "carol", 200, opponent="dave"),
        ]
        entries, _ = build_leaderboard(challenges, PROFILES)
        assert [e.user_id for e in entries[:2]] == ["carol", "alice"]

    def test_limit_keeps_total(self):
        challenges = [_done(uid, uid, 100) for uid in ("alice", "bob", "carol")]
        entries, total = build_leaderboard(challenges, PROFILES, limit=2)
        assert len(entries) == 2
        assert total == 3

    def test_unknown_users_skipped(self):
        entries, total = build_leaderboard([_done("zed", "zed", 100)], PROFILES)
        assert entries == []
        assert total == 0
