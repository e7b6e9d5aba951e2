"""Unit tests for heading slug generation."""

from __future__ import annotations

from hypothesis import given
from hypothesis import strategies as st

from spec_reconciler.spec_graph.slugs import SlugAllocator, is_valid_slug, slugify


def test_slugify_matches_github_anchors() -> None:
    assert slugify("Login Flow") == "login-flow"
    assert slugify("Retry: back-off & limits!") == "retry-back-off--limits"
    assert slugify("Use [the docs](http://x.y) here") == "use-the-docs-here"
    assert slugify("snake_case stays") == "snake_case-stays"


def test_allocator_suffixes_duplicates() -> None:
    allocator = SlugAllocator()
    assert allocator.allocate("Overview") == "overview"
    assert allocator.allocate("Overview") == "overview-1"
    assert allocator.allocate("Overview") == "overview-2"
    assert allocator.allocate("!!!") == "section"


def test_allocator_avoids_collision_with_literal_suffix_heading() -> None:
    allocator = SlugAllocator()
    assert allocator.allocate("Item 1") == "item-1"
    assert allocator.allocate("Item") == "item"
    assert allocator.allocate("Item") == "item-2"


@given(st.text(alphabet=st.characters(blacklist_categories=("Cs",)), max_size=60))
def test_slugify_is_stable_and_idempotent_on_valid_slugs(heading: str) -> None:
    slug = slugify(heading)
    assert slug == slugify(heading)
    if is_valid_slug(slug):
        assert slugify(slug) == slug
