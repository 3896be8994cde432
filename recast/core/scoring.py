"""
scoring.py — Round Scorer
=========================
Pure function: submissions → per-option winner + per-player round points.

WINNER ASSIGNMENT:
------------------
Options are processed in the order they appear in `options`. For each option,
candidates already claimed by an earlier option are skipped; the remaining
candidate with the strictly highest vote count wins the option. A shared top
count (or no candidates at all) leaves the option unassigned (`None`).
"""

from collections import defaultdict

from recast.core.models import Player


def tally_votes(submissions: dict[str, dict[str, str]]) -> dict[str, dict[str, int]]:
    """counts[option][player_id] = number of submissions assigning player_id to option."""
    counts: dict[str, dict[str, int]] = defaultdict(dict)
    for matches in submissions.values():
        for option, player_id in matches.items():
            counts[option][player_id] = counts[option].get(player_id, 0) + 1
    return counts


def assign_winners(
    options: list[str],
    submissions: dict[str, dict[str, str]],
) -> dict[str, str | None]:
    counts = tally_votes(submissions)
    assigned: set[str] = set()
    results: dict[str, str | None] = {}

    for option in options:
        candidates = [
            (pid, n) for pid, n in counts.get(option, {}).items() if pid not in assigned
        ]
        # stable: equal counts keep first-vote order, which never decides a winner
        candidates.sort(key=lambda c: c[1], reverse=True)

        if not candidates:
            results[option] = None
            continue

        top_pid, top = candidates[0]
        if len(candidates) > 1 and candidates[1][1] == top:
            results[option] = None
        else:
            results[option] = top_pid
            assigned.add(top_pid)

    return results


def round_points(submission: dict[str, str] | None, results: dict[str, str | None]) -> int:
    if not submission:
        return 0
    return sum(
        1
        for option, player_id in submission.items()
        if results.get(option) is not None and results[option] == player_id
    )


def score(
    submissions: dict[str, dict[str, str]],
    players: list[Player],
    current_round: int,
    options: list[str],
) -> tuple[dict[str, str | None], list[Player]]:
    """
    Score one round.

    Args:
        submissions: player_id → {option → assigned player_id}
        players: lobby players (turn order); not mutated
        current_round: 0-based round index the points belong to
        options: the round's options, in display order

    Returns:
        (results, updated_players) — `pointsHistory[current_round]` is
        overwritten and `score` recomputed as the history sum, so scoring the
        same round twice yields the same players.
    """
    results = assign_winners(options, submissions)

    updated: list[Player] = []
    for player in players:
        points = round_points(submissions.get(player.player_id), results)
        history = list(player.points_history)
        if len(history) <= current_round:
            history.extend([0] * (current_round + 1 - len(history)))
        history[current_round] = points
        updated.append(
            player.model_copy(update={"points_history": history, "score": sum(history)})
        )

    return results, updated
