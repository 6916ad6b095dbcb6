from decimal import Decimal, ROUND_HALF_UP

from .models import ComparisonResult, Statistics


def round_half_up(value: float, places: int = 2) -> float:
    """Round to a fixed number of decimals, halves away from zero."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def summarize(results: list[ComparisonResult], total_submissions: int) -> Statistics:
    """
    Aggregate similarity values of the returned comparisons.

    Args:
        results: Comparisons included in the response
        total_submissions: Number of submissions in the request

    Returns:
        Statistics with values on the 0-1 scale rounded to two decimals,
        all zeros when there are no comparisons
    """
    if not results:
        return Statistics(total_submissions=total_submissions)

    values = [r.similarity for r in results]
    return Statistics(
        total_submissions=total_submissions,
        total_comparisons=len(values),
        average_similarity=round_half_up(sum(values) / len(values)),
        max_similarity=round_half_up(max(values)),
        min_similarity=round_half_up(min(values)),
    )
