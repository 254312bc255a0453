"""Suggest RM projects for local projects by name similarity."""

import re
from collections.abc import Iterable
from dataclasses import dataclass

from rm_sync.rm.models import RMProject

DEFAULT_MIN_SCORE = 0.65


@dataclass
class MatchSuggestion:
    """Best RM candidate for a local project."""

    local_project_id: str
    local_project_name: str
    rm_project_id: int
    rm_project_name: str
    rm_project_code: str | None
    score: float
    reason: str


def normalize(text: str) -> str:
    """Lowercase, trim and collapse whitespace."""
    return re.sub(r"\s+", " ", text.strip().lower())


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance between two strings."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        current = [i]
        for j, cb in enumerate(b, 1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (ca != cb),
                )
            )
        previous = current
    return previous[-1]


def levenshtein_similarity(a: str, b: str) -> float:
    """1 - distance / longest length; 1.0 for identical strings."""
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    return 1 - levenshtein_distance(a, b) / max(len(a), len(b))


def _significant_words(text: str) -> list[str]:
    return [w for w in text.split(" ") if len(w) > 2]


def calculate_match_score(local_name: str, rm_project: RMProject) -> tuple[float, str]:
    """Score how well a local project name matches an RM project.

    Strategies are tried from strongest to weakest; the first hit wins.

    Args:
        local_name: Local project name.
        rm_project: Candidate RM project.

    Returns:
        (score in [0, 1], reason).
    """
    local = normalize(local_name)
    remote = normalize(rm_project.name)
    code = normalize(rm_project.code) if rm_project.code else None

    if local == remote:
        return 1.0, "exact"
    if code and local == code:
        return 0.95, "code_match"
    if remote.startswith(local) or local.startswith(remote):
        return 0.85, "starts_with"

    local_words = _significant_words(local)
    remote_words = _significant_words(remote)
    if local_words and remote_words:
        if all(any(w in rw for rw in remote_words) for w in local_words) or all(
            any(w in lw for lw in local_words) for w in remote_words
        ):
            return 0.75, "word_match"

    if local in remote or remote in local:
        return 0.65, "contains"

    similarity = levenshtein_similarity(local, remote)
    if similarity > 0.6:
        return similarity * 0.6, "partial"
    return 0.0, "partial"


def find_best_match(
    project_id: str,
    project_name: str,
    rm_projects: Iterable[RMProject],
    min_score: float = DEFAULT_MIN_SCORE,
) -> MatchSuggestion | None:
    """Best RM project scoring strictly above `min_score`, if any."""
    best: MatchSuggestion | None = None
    best_score = min_score
    for rm_project in rm_projects:
        score, reason = calculate_match_score(project_name, rm_project)
        if score > best_score:
            best_score = score
            best = MatchSuggestion(
                local_project_id=project_id,
                local_project_name=project_name,
                rm_project_id=rm_project.id,
                rm_project_name=rm_project.name,
                rm_project_code=rm_project.code,
                score=score,
                reason=reason,
            )
    return best


def suggest_matches(
    local_projects: Iterable[tuple[str, str]],
    rm_projects: list[RMProject],
    min_score: float = DEFAULT_MIN_SCORE,
) -> dict[str, MatchSuggestion]:
    """Best match per local project.

    Args:
        local_projects: (id, name) pairs.
        rm_projects: Candidate RM projects.
        min_score: Exclusive lower bound on accepted scores.

    Returns:
        Suggestions keyed by local project id; projects without a match
        are omitted.
    """
    suggestions: dict[str, MatchSuggestion] = {}
    for project_id, name in local_projects:
        match = find_best_match(project_id, name, rm_projects, min_score)
        if match:
            suggestions[project_id] = match
    return suggestions
