"""
Task detection for push deliveries.

Two independent signals are evaluated for every commit:

- the commit message (``"Task 1 Done"``, ``"Completed Task 2"``, ``"task 3"``),
  credited to every team whose directory the commit touches;
- the file layout ``team<id>/<category>/task<N>...``, which names its own
  team and category.

Every detector is a pure function returning ``TaskFact`` values. Detections
that cannot be attributed to a team, or whose task number falls outside
1..MAX_TASKS, are dropped rather than raised.
"""

import logging
import re
from typing import Dict, Iterable, List, Optional, Set

from shared.models import MAX_TASKS, Category, PushCommit, TaskFact

logger = logging.getLogger(__name__)

BRANCH_PREFIX = "refs/heads/"

BRANCH_CATEGORIES: Dict[str, Category] = {
    "web": Category.WEB,
    "android": Category.ANDROID,
    "core": Category.CORE,
}

COMPLETION_WORDS = r"(?:done|complete|completed|finished)"

# Ordered: the first pattern with an in-range task number wins
MESSAGE_PATTERNS = [
    re.compile(rf"task\s*(\d+)\s*{COMPLETION_WORDS}", re.IGNORECASE | re.ASCII),
    re.compile(rf"{COMPLETION_WORDS}\s*task\s*(\d+)", re.IGNORECASE | re.ASCII),
    re.compile(r"task\s*(\d+)", re.IGNORECASE | re.ASCII),
]

TEAM_PATH_PATTERN = re.compile(r"^(team[\w-]+)/", re.IGNORECASE | re.ASCII)
TASK_PATH_PATTERN = re.compile(r"^(team[\w-]+)/(web|android|core)/task(\d+)", re.IGNORECASE | re.ASCII)


def map_branch_to_category(ref: str) -> Category:
    """
    Category for a pushed ref.

    ``refs/heads/Web`` -> ``Category.WEB``. Any branch other than web, android
    or core maps to ``Category.GLOBAL``, which carries no tasks.
    """
    branch = ref[len(BRANCH_PREFIX):] if ref.startswith(BRANCH_PREFIX) else ref
    return BRANCH_CATEGORIES.get(branch.lower(), Category.GLOBAL)


def _valid_task_number(value: str) -> Optional[int]:
    # More than one significant digit is always out of range
    if len(value.lstrip("0")) > 1:
        return None
    number = int(value)
    return number if 1 <= number <= MAX_TASKS else None


def detect_task_from_message(message: Optional[str]) -> Optional[int]:
    """Task number announced by a commit message, or None."""
    if not message:
        return None
    for pattern in MESSAGE_PATTERNS:
        match = pattern.search(message)
        if match:
            task_number = _valid_task_number(match.group(1))
            if task_number is not None:
                return task_number
    return None


def extract_team_from_path(file_path: str) -> Optional[str]:
    """Team owning ``file_path`` (its leading ``team...`` directory), or None."""
    match = TEAM_PATH_PATTERN.match(file_path)
    return match.group(1) if match else None


def detect_task_from_file_path(file_path: str) -> Optional[TaskFact]:
    """
    Completion encoded in the path itself.

    ``team1/web/task1_solution.js`` -> ``TaskFact("team1", Category.WEB, 1)``.
    """
    match = TASK_PATH_PATTERN.match(file_path)
    if not match:
        return None
    task_number = _valid_task_number(match.group(3))
    if task_number is None:
        return None
    return TaskFact(
        team=match.group(1),
        category=BRANCH_CATEGORIES[match.group(2).lower()],
        task_number=task_number,
    )


def teams_in_paths(file_paths: Iterable[str]) -> List[str]:
    """Distinct teams touched by ``file_paths``, in first-seen order."""
    teams: List[str] = []
    for file_path in file_paths:
        team = extract_team_from_path(file_path)
        if team and team not in teams:
            teams.append(team)
    return teams


def detect_from_message(commit: PushCommit, category: Category) -> List[TaskFact]:
    """
    Message signal for one commit.

    The detected task is credited to every team the commit touches, even when
    the commit edits another team's files for unrelated reasons.
    """
    task_number = detect_task_from_message(commit.message)
    if task_number is None:
        return []
    teams = teams_in_paths(commit.changed_files)
    if not teams:
        logger.debug(f"Commit {commit.id} announces task {task_number} but touches no team paths")
        return []
    return [TaskFact(team, category, task_number) for team in teams]


def detect_from_paths(commit: PushCommit, category: Category) -> List[TaskFact]:
    """Path signal for one commit, restricted to the branch's category."""
    facts = []
    for file_path in commit.changed_files:
        fact = detect_task_from_file_path(file_path)
        if fact is None:
            continue
        if fact.category != category:
            logger.debug(f"Ignoring {file_path}: {fact.category.value} path pushed to {category.value}")
            continue
        facts.append(fact)
    return facts


def detect_commit_tasks(commit: PushCommit, category: Category) -> List[TaskFact]:
    """Both signals for one commit. Duplicates are left for the aggregator."""
    if not category.has_tasks:
        return []
    return detect_from_message(commit, category) + detect_from_paths(commit, category)


def aggregate_completions(
    commits: Iterable[PushCommit], category: Category
) -> Dict[str, Set[int]]:
    """
    Merge detections across all commits of one delivery.

    Returns team name -> distinct task numbers for ``category``. Teams keep the
    order in which they were first detected.
    """
    completions: Dict[str, Set[int]] = {}
    facts: Set[TaskFact] = set()
    for commit in commits:
        for fact in detect_commit_tasks(commit, category):
            if fact in facts:
                continue
            facts.add(fact)
            completions.setdefault(fact.team, set()).add(fact.task_number)
    return completions
