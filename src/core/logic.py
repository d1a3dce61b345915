def sort_by_votes(games: list[dict]) -> list[dict]:
    """Order result rows by net votes, highest first. Ties keep their order."""
    return sorted(games, key=lambda g: g["votes"], reverse=True)


# ---------------------------------------------------------------------------- #
# Winner Calculation
# ---------------------------------------------------------------------------- #


def calculate_winners(games: list[dict]) -> list[str]:
    """
    Determine the winning game(s) of a vote.

    Args:
        games: Result rows with `name` and `votes` (net) keys

    Returns:
        Names of every game sharing the top score. Empty when no game has a
        positive net score.
    """
    if not games:
        return []

    max_score = max(g["votes"] for g in games)
    if max_score <= 0:
        return []
    return [g["name"] for g in games if g["votes"] == max_score]
