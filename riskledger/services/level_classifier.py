"""
Level classification — 5×5 ordinal matrices.

Maps one or two bounded scores (1-5) to a severity level and a numeric
rank (1-25). The rank orders cells for waterfall trend charts; it follows
the fixed DoD / MIL-STD-882 style ranking, not the product of the scores.

    Rank table (likelihood rows × consequence/impact columns):

        L\\C   1    2    3    4    5
        1     1    3    5    9   12
        2     2    4   11   15   17
        3     6   10   14   19   21
        4     7   13   18   22   24
        5     8   16   20   23   25

Issues already happened: likelihood is pinned and classification reads the
consequence alone against the bottom row (8, 16, 20, 23, 25), with a coarser
low/moderate split (C1-3 low, C4-5 moderate).

All functions are pure and total: inputs are clamped into [1, 5] first.
"""

from dataclasses import dataclass

LOW = "low"
MODERATE = "moderate"
HIGH = "high"

LEVELS = (LOW, MODERATE, HIGH)

# Display labels the UI shows for opportunity bands.
OPPORTUNITY_LEVEL_LABELS = {LOW: "Good", MODERATE: "Very Good", HIGH: "Excellent"}

MIN_SCORE = 1
MAX_SCORE = 5
DEFAULT_SCORE = 3

_RANK_MATRIX = (
    (1, 3, 5, 9, 12),
    (2, 4, 11, 15, 17),
    (6, 10, 14, 19, 21),
    (7, 13, 18, 22, 24),
    (8, 16, 20, 23, 25),
)

_RISK_LEVEL_MATRIX = (
    (LOW, LOW, LOW, MODERATE, MODERATE),
    (LOW, LOW, MODERATE, MODERATE, HIGH),
    (LOW, MODERATE, MODERATE, HIGH, HIGH),
    (MODERATE, MODERATE, HIGH, HIGH, HIGH),
    (MODERATE, HIGH, HIGH, HIGH, HIGH),
)

# Tabulated separately from the risk grid; the two happen to agree cell
# for cell today but are owned by different registers.
_OPPORTUNITY_LEVEL_MATRIX = (
    (LOW, LOW, LOW, MODERATE, MODERATE),
    (LOW, LOW, MODERATE, MODERATE, HIGH),
    (LOW, MODERATE, MODERATE, HIGH, HIGH),
    (MODERATE, MODERATE, HIGH, HIGH, HIGH),
    (MODERATE, HIGH, HIGH, HIGH, HIGH),
)

_ISSUE_LEVELS = (LOW, LOW, LOW, MODERATE, MODERATE)
_ISSUE_RANKS = _RANK_MATRIX[MAX_SCORE - 1]


@dataclass(frozen=True)
class LevelResult:
    """Severity band plus its waterfall rank."""

    level: str
    rank: int

    def to_dict(self) -> dict:
        return {"level": self.level, "rank": self.rank}


def clamp_score(value) -> int:
    """Clamp an integer-like score into [1, 5]."""
    return max(MIN_SCORE, min(MAX_SCORE, int(value)))


def classify_risk(likelihood, consequence) -> LevelResult:
    """Risk level from likelihood × consequence."""
    row = clamp_score(likelihood) - 1
    col = clamp_score(consequence) - 1
    return LevelResult(_RISK_LEVEL_MATRIX[row][col], _RANK_MATRIX[row][col])


def classify_opportunity(likelihood, impact) -> LevelResult:
    """Opportunity level from likelihood × impact."""
    row = clamp_score(likelihood) - 1
    col = clamp_score(impact) - 1
    return LevelResult(_OPPORTUNITY_LEVEL_MATRIX[row][col], _RANK_MATRIX[row][col])


def classify_issue(consequence) -> LevelResult:
    """Issue level from consequence alone."""
    col = clamp_score(consequence) - 1
    return LevelResult(_ISSUE_LEVELS[col], _ISSUE_RANKS[col])
