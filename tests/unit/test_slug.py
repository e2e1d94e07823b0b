from __future__ import annotations

from datetime import datetime, timezone

from redit.utils.slug import abbreviate_slug, branch_name, slugify


def test_slugify_normalises_text() -> None:
    assert slugify("Add a Divide function!") == "add-a-divide-function"
    assert slugify("   ", fallback="Run") == "run"
    assert slugify("select_mode") == "select_mode"


def test_long_slugs_keep_a_hash_suffix() -> None:
    slug = slugify("x" * 200, max_length=20)
    assert len(slug) == 20
    assert slug != abbreviate_slug("y" * 200, max_length=20)


def test_branch_name_is_git_safe() -> None:
    moment = datetime(2024, 5, 1, 12, 30, 45, tzinfo=timezone.utc)
    assert branch_name("Rename `add` to sum, please!", now=moment) == "redit/rename-add-to-sum-please-20240501123045"
    assert branch_name("!!!", now=moment) == "redit/changes-20240501123045"
