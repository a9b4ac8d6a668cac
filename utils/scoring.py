from decimal import Decimal, ROUND_HALF_UP


# (minimum score, grade, grade points)
GRADE_TABLE = (
    (90, "A", 4.0),
    (80, "B", 3.0),
    (70, "C", 2.0),
    (60, "D", 1.0),
)
FALLBACK_GRADE = ("E", 0.0)

# (minimum composite index, predicate)
PREDICATE_TABLE = (
    (3.51, "Dengan Pujian"),
    (3.01, "Sangat Memuaskan"),
    (2.51, "Memuaskan"),
    (2.00, "Cukup"),
)
FALLBACK_PREDICATE = "Kurang"


def clamp(n: float, lo: float, hi: float) -> float:
    try:
        n = float(n)
    except (TypeError, ValueError):
        n = lo
    return max(lo, min(hi, n))


def round_half_up(value: float) -> int:
    """Round to the nearest integer, .5 going up (not banker's rounding)."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def percentage(achieved: int, target: int) -> int:
    """0..100 completion; a zero target scores 0 instead of dividing by zero."""
    if not target or target <= 0:
        return 0
    return min(100, round_half_up(achieved * 100 / float(target)))


def mean_score(values) -> int:
    values = list(values)
    if not values:
        return 0
    return round_half_up(sum(values) / float(len(values)))


def grade_for_score(score: float) -> tuple[str, float]:
    for minimum, grade, points in GRADE_TABLE:
        if score >= minimum:
            return grade, points
    return FALLBACK_GRADE


def predicate_for_index(index: float) -> str:
    for minimum, label in PREDICATE_TABLE:
        if index >= minimum:
            return label
    return FALLBACK_PREDICATE
