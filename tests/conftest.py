"""Shared myth fixtures."""

import pytest

from mythcanon.schemas.myth import (
    CollaboratorCategory,
    CollaboratorCategoryAssignment,
    PlotPoint,
)


def make_point(point_id: str, *tags: tuple[str, str], text: str = "") -> PlotPoint:
    """Plot point tagged with (category_id, collaborator_email) pairs."""
    return PlotPoint(
        id=point_id,
        text=text,
        collaborator_categories=[
            CollaboratorCategoryAssignment(
                plot_point_id=point_id,
                collaborator_category_id=category_id,
                collaborator_email=email,
                category_name=category_id,
            )
            for category_id, email in tags
        ],
    )


@pytest.fixture
def point_factory():
    return make_point


@pytest.fixture
def three_points() -> list[PlotPoint]:
    """p1 and p2 share cat-a; p2 is also cat-b; p3 is alone in cat-c."""
    return [
        make_point("p1", ("cat-a", "alpha@example.com"), text="The hero leaves home"),
        make_point(
            "p2",
            ("cat-a", "alpha@example.com"),
            ("cat-b", "beta@example.com"),
            text="A rival appears",
        ),
        make_point("p3", ("cat-c", "gamma@example.com"), text="The hero returns"),
    ]


@pytest.fixture
def three_categories() -> list[CollaboratorCategory]:
    return [
        CollaboratorCategory(
            id="cat-a", myth_id="myth", collaborator_email="alpha@example.com", name="Start"
        ),
        CollaboratorCategory(
            id="cat-b", myth_id="myth", collaborator_email="beta@example.com", name="Conflict"
        ),
        CollaboratorCategory(
            id="cat-c", myth_id="myth", collaborator_email="gamma@example.com", name="Resolution"
        ),
    ]


@pytest.fixture
def clustered_points() -> list[PlotPoint]:
    """Three clean pairs, one collaborator category each."""
    return [
        make_point("p1", ("cat-quest", "alpha@example.com")),
        make_point("p2", ("cat-quest", "alpha@example.com")),
        make_point("p3", ("cat-twist", "beta@example.com")),
        make_point("p4", ("cat-twist", "beta@example.com")),
        make_point("p5", ("cat-resolution", "gamma@example.com")),
        make_point("p6", ("cat-resolution", "gamma@example.com")),
    ]


@pytest.fixture
def clustered_categories() -> list[CollaboratorCategory]:
    return [
        CollaboratorCategory(
            id="cat-quest", myth_id="myth", collaborator_email="alpha@example.com", name="Quest"
        ),
        CollaboratorCategory(
            id="cat-twist", myth_id="myth", collaborator_email="beta@example.com", name="Twist"
        ),
        CollaboratorCategory(
            id="cat-resolution", myth_id="myth", collaborator_email="gamma@example.com", name="Resolution"
        ),
    ]
