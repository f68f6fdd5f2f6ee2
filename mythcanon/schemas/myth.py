"""Myth archive schemas consumed by canonicalization."""

from pydantic import Field

from mythcanon.schemas.common import FrozenSchema


class CollaboratorCategoryAssignment(FrozenSchema):
    """One collaborator's category tag on a plot point."""

    plot_point_id: str
    collaborator_category_id: str
    collaborator_email: str
    category_name: str = ""
    weight: float | None = None

    @property
    def effective_weight(self) -> float:
        """Tag weight, defaulting to 1 when absent."""
        return 1.0 if self.weight is None else self.weight


class CollaboratorCategory(FrozenSchema):
    """A collaborator's personal category within a myth."""

    id: str
    myth_id: str
    collaborator_email: str
    name: str


class PlotPoint(FrozenSchema):
    """A narrative beat with the collaborator categories applied to it."""

    id: str
    text: str = ""
    order: int = 0
    category: str = ""
    mytheme_refs: list[str] = Field(default_factory=list)
    canonical_category_id: str | None = None
    collaborator_categories: list[CollaboratorCategoryAssignment] = Field(
        default_factory=list
    )
