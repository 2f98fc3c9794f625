"""Framework dimension weights for health score calculation.

Framework Health Score = Σ(dimension score × weight). Each table is keyed by
the framework slug and must sum to 1.0; tables are validated once when this
module is imported so a bad table stops the process instead of skewing
scores at request time.
"""

from app.core.errors import FrameworkWeightsError

WEIGHT_TOLERANCE = 0.01

FRAMEWORK_DIMENSION_WEIGHTS: dict[str, dict[str, float]] = {
    "lean-canvas": {
        "problem": 0.15,
        "solution": 0.15,
        "unique-value": 0.15,
        "customer-segments": 0.10,
        "channels": 0.10,
        "revenue": 0.10,
        "cost": 0.10,
        "key-metrics": 0.10,
        "unfair-advantage": 0.05,
    },
    "design-thinking": {
        "empathize": 0.25,
        "define": 0.20,
        "ideate": 0.20,
        "prototype": 0.20,
        "test": 0.15,
    },
    "business-canvas": {
        "key-partners": 0.10,
        "key-activities": 0.10,
        "key-resources": 0.10,
        "value-propositions": 0.15,
        "customer-relationships": 0.10,
        "channels": 0.10,
        "customer-segments": 0.15,
        "cost-structure": 0.10,
        "revenue-streams": 0.10,
    },
    "okr-framework": {
        "vision": 0.20,
        "objectives": 0.30,
        "key-results": 0.30,
        "initiatives": 0.20,
    },
    "jobs-to-be-done": {
        "job-statement": 0.25,
        "desired-outcomes": 0.25,
        "current-solutions": 0.20,
        "job-circumstances": 0.15,
        "job-constraints": 0.15,
    },
}


def validate_framework_weights(
    tables: dict[str, dict[str, float]] | None = None,
) -> None:
    """
    Check that every weight table sums to 1.0 within WEIGHT_TOLERANCE.

    Args:
        tables: Tables to check (defaults to FRAMEWORK_DIMENSION_WEIGHTS)

    Raises:
        FrameworkWeightsError: On the first table outside tolerance
    """
    tables = FRAMEWORK_DIMENSION_WEIGHTS if tables is None else tables

    for slug, weights in tables.items():
        total = sum(weights.values())
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            raise FrameworkWeightsError(
                f'Framework "{slug}" weights sum to {total:.3f}, not 1.0 '
                f"(tolerance: {WEIGHT_TOLERANCE})"
            )
        negative = [key for key, weight in weights.items() if weight < 0]
        if negative:
            raise FrameworkWeightsError(
                f'Framework "{slug}" has negative weights for: {", ".join(negative)}'
            )


def get_framework_weights(framework_slug: str | None) -> dict[str, float] | None:
    """Weight table for a framework slug, or None when none is registered."""
    if not framework_slug:
        return None
    return FRAMEWORK_DIMENSION_WEIGHTS.get(framework_slug)


def calculate_weighted_score(
    dimension_scores: dict[str, float],
    framework_slug: str | None,
) -> float | None:
    """
    Aggregate per-dimension scores (0-100) into one framework health score.

    Dimensions missing from the weight table are ignored. With full coverage
    the raw weighted sum is returned; with partial coverage the sum is
    normalized by the weight actually used, so an analysis in progress still
    reports a meaningful running score.

    Args:
        dimension_scores: Mapping of dimension key to score (0-100)
        framework_slug: Weight table key (e.g. "lean-canvas")

    Returns:
        Weighted score (0.0 when no supplied dimension is in the table), or
        None when the framework is unscorable (no table registered)

    Example:
        >>> calculate_weighted_score({"problem": 0, **rest_at_100}, "lean-canvas")
        85.0
    """
    weights = get_framework_weights(framework_slug)
    if weights is None:
        return None

    accumulated = 0.0
    weight_used = 0.0
    covered: set[str] = set()

    for dimension_key, score in dimension_scores.items():
        weight = weights.get(dimension_key)
        if weight is None:
            continue
        accumulated += score * weight
        weight_used += weight
        covered.add(dimension_key)

    if weight_used <= 0:
        return 0.0

    if covered == set(weights):
        return accumulated

    return accumulated / weight_used


# Validate weights on module load
validate_framework_weights()
