"""
Per-run scoreboard and final ranking.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Tuple, TypeVar

K = TypeVar("K")


@dataclass
class Standings:
    """Final ranking split by the win threshold."""
    winners: List[Tuple] = field(default_factory=list)
    participants: List[Tuple] = field(default_factory=list)


def ranking(scores: Mapping[K, int]) -> List[Tuple[K, int]]:
    """
    Sort players by score, highest first.

    Ties keep the mapping's insertion order, i.e. whoever first scored ranks
    higher. The sort is stable so this is deterministic.
    """
    return sorted(scores.items(), key=lambda item: item[1], reverse=True)


def render(scores: Mapping[K, int], win_threshold: int) -> Standings:
    """Split a ranking into winners (score >= threshold) and the rest."""
    standings = Standings()
    for player, score in ranking(scores):
        if score >= win_threshold:
            standings.winners.append((player, score))
        else:
            standings.participants.append((player, score))
    return standings


class Scoreboard:
    """Accumulates points per player across the rounds of one quiz run."""

    def __init__(self):
        self._scores: Dict[int, int] = {}
        self._names: Dict[int, str] = {}

    def add(self, player_id: int, player_name: str, points: int = 1) -> int:
        """Add points to a player and return their new total."""
        self._names[player_id] = player_name
        self._scores[player_id] = self._scores.get(player_id, 0) + points
        return self._scores[player_id]

    def score(self, player_id: int) -> int:
        return self._scores.get(player_id, 0)

    def name(self, player_id: int) -> str:
        return self._names.get(player_id, str(player_id))

    def reached(self, player_ids, threshold: int) -> List[int]:
        """Players among `player_ids` whose total meets the threshold."""
        return [p for p in player_ids if self._scores.get(p, 0) >= threshold]

    @property
    def scores(self) -> Dict[int, int]:
        return dict(self._scores)

    def standings(self, win_threshold: int) -> Standings:
        """Standings keyed by display name."""
        named = render(self._scores, win_threshold)
        return Standings(
            winners=[(self.name(p), s) for p, s in named.winners],
            participants=[(self.name(p), s) for p, s in named.participants],
        )

    def format(self, win_threshold: int) -> str:
        """Plain-text final scoreboard."""
        standings = self.standings(win_threshold)
        if not standings.winners and not standings.participants:
            return "Nobody scored any points."

        lines = []
        if standings.winners:
            lines.append("**Winners**")
            lines.extend(f"{i}. {name}: {score}" for i, (name, score) in enumerate(standings.winners, start=1))
        if standings.participants:
            lines.append("**Participants**")
            lines.extend(f"{name}: {score}" for name, score in standings.participants)
        return "\n".join(lines)

    def __len__(self) -> int:
        return len(self._scores)
