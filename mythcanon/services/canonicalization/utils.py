"""Helpers shared by the runners and the metric suite."""

from collections.abc import Iterable, Mapping, Sequence

import numpy as np

from mythcanon.schemas.canonicalization import (
    CanonicalAssignment,
    CanonicalCategoryPrevalence,
)
from mythcanon.schemas.myth import CollaboratorCategoryAssignment, PlotPoint


def index_plot_points(plot_points: Sequence[PlotPoint]) -> dict[str, PlotPoint]:
    """Map plot point id to plot point."""
    return {point.id: point for point in plot_points}


def collaborator_key(tag: CollaboratorCategoryAssignment) -> str:
    """Key identifying a collaborator's category: ``email:category_id``."""
    return f"{tag.collaborator_email or 'unknown'}:{tag.collaborator_category_id}"


def category_counts(
    plot_point_ids: Iterable[str],
    lookup: Mapping[str, PlotPoint],
) -> dict[str, int]:
    """Count collaborator-category tags over a set of plot points."""
    counts: dict[str, int] = {}
    for plot_point_id in plot_point_ids:
        point = lookup.get(plot_point_id)
        if point is None:
            continue
        for tag in point.collaborator_categories:
            counts[tag.collaborator_category_id] = (
                counts.get(tag.collaborator_category_id, 0) + 1
            )
    return counts


def shannon_entropy(values: Iterable[float]) -> float:
    """Shannon entropy (base 2) of a histogram; 0 for an empty histogram."""
    counts = np.fromiter((v for v in values if v > 0), dtype=float)
    total = counts.sum()
    if total <= 0:
        return 0.0
    probabilities = counts / total
    return float(-(probabilities * np.log2(probabilities)).sum())


def normalized_entropy(values: Iterable[float], universe_size: int) -> float:
    """Shannon entropy scaled by log2 of the universe size.

    Returns 0 when the universe has at most one member.
    """
    if universe_size <= 1:
        return 0.0
    return shannon_entropy(values) / float(np.log2(universe_size))


def group_by_label(labels: Mapping[str, str]) -> dict[str, list[str]]:
    """Invert point -> label into label -> members, in first-seen order."""
    groups: dict[str, list[str]] = {}
    for point_id, label in labels.items():
        groups.setdefault(label, []).append(point_id)
    return groups


def build_prevalence(
    assignments: Sequence[CanonicalAssignment],
    plot_points: Sequence[PlotPoint],
) -> list[CanonicalCategoryPrevalence]:
    """Count collaborator-category tags per canonical cluster."""
    lookup = index_plot_points(plot_points)
    totals: dict[str, dict[str, float]] = {}

    for assignment in assignments:
        point = lookup.get(assignment.plot_point_id)
        if point is None:
            continue
        target = totals.setdefault(assignment.canonical_id, {})
        for tag in point.collaborator_categories:
            target[tag.collaborator_category_id] = (
                target.get(tag.collaborator_category_id, 0) + 1
            )

    return [
        CanonicalCategoryPrevalence(canonical_id=canonical_id, totals=counts)
        for canonical_id, counts in totals.items()
    ]
