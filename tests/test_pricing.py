import hashlib

import pytest

from backend import pricing


def test_seeded_fare_is_deterministic():
    assert pricing.seeded_fare("prod-1", "salt") == pricing.seeded_fare("prod-1", "salt")


def test_seeded_fare_matches_digest_prefix():
    digest = hashlib.sha256(b"prod-1salt").digest()
    fraction = int.from_bytes(digest[:4], "big") / 2**32
    expected = round(20.0 + fraction * 180.0, 2)
    assert pricing.seeded_fare("prod-1", "salt") == expected


@pytest.mark.parametrize("seed", ["a", "b", "item_0", "66f0c0ffee", "default", ""])
def test_seeded_fare_stays_in_range(seed):
    fare = pricing.seeded_fare(seed, "salt")
    assert 20.0 <= fare <= 200.0


def test_salt_changes_fares():
    seeds = [f"product-{index}" for index in range(10)]
    unsalted = [pricing.seeded_fare(seed, "") for seed in seeds]
    salted = [pricing.seeded_fare(seed, "winter") for seed in seeds]
    assert unsalted != salted


def test_estimate_labels_items_without_id():
    estimates = pricing.estimate([{"id": "abc"}, {}, {"sku": "SKU-9"}])
    assert [entry["id"] for entry in estimates] == ["abc", "item_1", "SKU-9"]
    assert estimates[0]["cost"] == pricing.seeded_fare("abc")


def test_hashing_failure_uses_random_fare(monkeypatch):
    def broken_sha256(*_args, **_kwargs):
        raise ValueError("sha256 disabled")

    monkeypatch.setattr(pricing.hashlib, "sha256", broken_sha256)
    monkeypatch.setattr(pricing.random, "random", lambda: 0.5)
    assert pricing.seeded_fare("anything") == 110.0


@pytest.mark.parametrize(
    "value, valid",
    [
        ("560001", True),
        ("1234", False),
        ("5600011", False),
        ("56000a", False),
        ("٥٦٠٠٠١", False),
        ("", False),
        (None, False),
    ],
)
def test_is_valid_pincode(value, valid):
    assert pricing.is_valid_pincode(value) is valid


def test_extract_pincode_checks_aliases_in_order():
    assert pricing.extract_pincode({"postal_code": "110001"}) == "110001"
    assert pricing.extract_pincode({"pincode": 560001, "postalCode": "1"}) == "560001"
    assert pricing.extract_pincode({"weight": 1}) is None


def test_collect_source_items_prefers_items_then_parcels():
    assert pricing.collect_source_items({"items": [{"id": "x", "weight": 2}]}) == [
        {"id": "x", "weight": 2}
    ]
    assert pricing.collect_source_items({"parcels": [{"actual_weight": 1.5}]}) == [
        {"id": "parcel_0", "weight": 1.5}
    ]
    assert pricing.collect_source_items({"productId": "p1", "weight": "-3"}) == [
        {"id": "p1", "weight": 0.5}
    ]


def test_build_fallback_rates_shape():
    rates = pricing.build_fallback_rates([{"id": "p1", "weight": 1.2}], "s", "INR")
    assert rates == [
        {
            "productId": "p1",
            "weight": 1.2,
            "currency": "INR",
            "shipping_cost": pricing.seeded_fare("p1", "s"),
            "label": "Seeded fallback rate for p1",
        }
    ]
