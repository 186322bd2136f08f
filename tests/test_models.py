"""
Unit tests for item helpers: TTL clamping, expiry math, owner labels, liveness.
"""
import pytest

from clipboard_backend.errors import Expired
from clipboard_backend.models import (
    MS_PER_MINUTE,
    Item,
    ItemKind,
    clamp_ttl_minutes,
    compute_expiry,
    normalize_owner_label,
    require_live,
)


@pytest.mark.parametrize(
    "ttl, expected",
    [(-5, 1), (0, 1), (1, 1), (60, 60), (10080, 10080), (10081, 10080), (10**9, 10080)],
)
def test_clamp_ttl_minutes(ttl, expected):
    assert clamp_ttl_minutes(ttl) == expected


def test_compute_expiry_uses_clamped_minutes():
    created = 1_700_000_000_000
    assert compute_expiry(created, 60) == created + 60 * MS_PER_MINUTE
    assert compute_expiry(created, 0) == created + MS_PER_MINUTE
    assert compute_expiry(created, 999_999) == created + 10080 * MS_PER_MINUTE
    assert compute_expiry(created, 0) > created


class TestOwnerLabel:
    def test_default_when_missing(self):
        assert normalize_owner_label(None) == "web client"
        assert normalize_owner_label("") == "web client"
        assert normalize_owner_label("   ") == "web client"

    def test_truncated_to_fifty_characters(self):
        label = "x" * 80
        assert normalize_owner_label(label) == "x" * 50

    def test_short_label_kept(self):
        assert normalize_owner_label("laptop") == "laptop"


def _item(expires_at: int) -> Item:
    return Item(
        id="00000000-0000-4000-8000-000000000000",
        kind=ItemKind.TEXT.value,
        payload="hello",
        created_at=expires_at - MS_PER_MINUTE,
        expires_at=expires_at,
        owner_label="web client",
    )


def test_item_is_live_only_strictly_before_expiry():
    item = _item(expires_at=10_000)
    assert item.is_live(9_999)
    assert not item.is_live(10_000)
    assert not item.is_live(10_001)


def test_require_live_raises_expired_with_item():
    item = _item(expires_at=10_000)
    assert require_live(item, 5_000) is item
    with pytest.raises(Expired) as excinfo:
        require_live(item, 10_000)
    assert excinfo.value.item is item
