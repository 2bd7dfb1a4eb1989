import json
from datetime import datetime, timedelta, timezone

import pytest

from storefront.collections import CartStore, WishlistStore, is_valid_id
from storefront.events import (
    CART_CHANGED,
    ORDERS_CHANGED,
    REVIEWS_CHANGED,
    EventBus,
    StorageEvent,
    UpdateEvent,
)
from storefront.orders import OrderStore, parse_iso
from storefront.reviews import ReviewStore
from storefront.session import Session, SessionStore
from storefront.storage import FileStorage, MemoryStorage

FIXED_NOW = datetime(2024, 3, 1, 12, 30, tzinfo=timezone.utc)


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def bus():
    return EventBus()


@pytest.mark.parametrize("value", ["", "  ", "null", "undefined", "0", None])
def test_sentinel_ids_are_ignored(storage, value):
    cart = CartStore(storage)
    wishlist = WishlistStore(storage)

    cart.add(value)
    wishlist.add(value)

    assert not is_valid_id(value)
    assert cart.get() == []
    assert wishlist.get() == []
    assert cart.is_present(value) is False


def test_cart_set_dedupes_keeping_first_seen_order(storage):
    cart = CartStore(storage)

    result = cart.set(["b", " a ", "b", "null", 7, "a"])

    assert result == ["b", "a", "7"]
    assert cart.get() == ["b", "a", "7"]
    assert json.loads(storage.get_item("cart")) == ["b", "a", "7"]


def test_cart_add_add_remove(storage):
    cart = CartStore(storage)

    cart.add("x")
    cart.add("y")
    cart.add("x")
    cart.remove("x")

    assert cart.get() == ["y"]


def test_wishlist_prepends_new_entries(storage):
    wishlist = WishlistStore(storage)

    wishlist.add("first")
    wishlist.add("second")
    wishlist.add("first")

    assert wishlist.get() == ["second", "first"]
    assert wishlist.toggle("second") is False
    assert wishlist.toggle("third") is True
    assert wishlist.get() == ["third", "first"]


@pytest.mark.parametrize("raw", ["{not json", '{"a": 1}', '"cart"'])
def test_corrupt_storage_reads_empty(storage, raw):
    storage.set_item("cart", raw)
    assert CartStore(storage).get() == []


def test_storage_write_failures_are_swallowed(caplog):
    class ReadOnlyStorage(MemoryStorage):
        def set_item(self, key, value):
            raise OSError("quota exceeded")

    cart = CartStore(ReadOnlyStorage())

    cart.add("x")

    assert cart.get() == []
    assert "quota exceeded" in caplog.text


def test_set_publishes_storage_event(storage, bus):
    events = []
    bus.subscribe(CART_CHANGED, events.append)

    CartStore(storage, bus).add("x")

    assert events == [StorageEvent(topic=CART_CHANGED, key="cart", new_value='["x"]')]


def test_unserializable_payload_publishes_update_event(bus):
    events = []
    bus.subscribe(ORDERS_CHANGED, events.append)
    payload = [object()]

    bus.notify_change(ORDERS_CHANGED, "orders_v1", payload)

    assert events == [UpdateEvent(topic=ORDERS_CHANGED, detail=payload)]


def test_failing_listener_does_not_stop_delivery(bus, caplog):
    received = []

    def broken(_event):
        raise RuntimeError("boom")

    bus.subscribe(CART_CHANGED, broken)
    bus.subscribe(CART_CHANGED, received.append)

    bus.notify_change(CART_CHANGED, "cart", ["x"])

    assert len(received) == 1
    assert "boom" in caplog.text


def test_unsubscribe_stops_events(bus):
    received = []
    unsubscribe = bus.subscribe(CART_CHANGED, received.append)

    unsubscribe()
    unsubscribe()
    bus.notify_change(CART_CHANGED, "cart", [])

    assert received == []
    with pytest.raises(ValueError):
        bus.subscribe("unknown-topic", received.append)


def test_order_delivery_is_five_days_after_creation(storage):
    orders = OrderStore(storage, clock=lambda: FIXED_NOW)

    order = orders.add_order({"id": "p1", "title": "Mug", "price": 12})

    assert order.id == f"p1-{int(FIXED_NOW.timestamp() * 1000)}"
    assert order.created_at == "2024-03-01T12:30:00.000Z"
    assert parse_iso(order.delivery_at) - parse_iso(order.created_at) == timedelta(days=5)
    assert orders.get_orders() == [order]


def test_orders_are_newest_first_and_removable(storage):
    moments = iter([FIXED_NOW, FIXED_NOW + timedelta(seconds=1)])
    orders = OrderStore(storage, clock=lambda: next(moments))

    first = orders.add_order({"id": "p1"})
    second = orders.add_order({"id": "p2"})
    assert orders.add_order({"id": "undefined"}) is None

    assert [order.id for order in orders.get_orders()] == [second.id, first.id]
    orders.remove_order(first.id)
    assert [order.id for order in orders.get_orders()] == [second.id]
    orders.clear_orders()
    assert orders.get_orders() == []


def test_anonymous_reviews_are_purged_on_read(storage, bus):
    notifications = []
    bus.subscribe(REVIEWS_CHANGED, notifications.append)
    storage.set_item(
        "reviews_v1",
        json.dumps(
            [
                {"id": "r1", "orderId": "o1", "productId": "p1", "rating": 5, "reviewerName": "Asha", "createdAt": "t"},
                {"id": "r2", "orderId": "o2", "productId": "p1", "rating": 1, "reviewerName": " ", "createdAt": "t"},
                {"id": "r3", "orderId": "o3", "productId": "p2", "rating": 2, "createdAt": "t"},
            ]
        ),
    )
    reviews = ReviewStore(storage, bus)

    first_read = reviews.get_reviews()
    second_read = reviews.get_reviews()

    assert [review.id for review in first_read] == ["r1"]
    assert second_read == first_read
    assert len(json.loads(storage.get_item("reviews_v1"))) == 1
    assert notifications == []


def test_review_lookup(storage):
    reviews = ReviewStore(storage, clock=lambda: FIXED_NOW)

    created = reviews.add_review("o1", "p1", 4, text="Nice", reviewer_name="Asha")
    reviews.add_review("o2", "p1", 5, reviewer_name="Ravi")

    assert created.id == f"o1-{int(FIXED_NOW.timestamp() * 1000)}"
    assert len(reviews.get_reviews_for_product("p1")) == 2
    assert reviews.get_review_for_order("o1") == created
    assert reviews.get_review_for_order("missing") is None
    assert reviews.add_review("null", "p1", 5, reviewer_name="Asha") is None
    assert reviews.add_review("o3", "p1", 9, reviewer_name="Asha") is None

    reviews.remove_review(created.id)
    assert reviews.get_review_for_order("o1") is None


def test_session_round_trip(storage):
    sessions = SessionStore(storage)
    assert sessions.load() == Session()

    sessions.save(Session(user_id="u1", email="a@example.com", role="ADMIN", token="t"))
    loaded = sessions.load()

    assert loaded.authenticated
    assert loaded.user_role == "admin"
    assert loaded.has_role("admin")
    assert loaded.reviewer_name == "a@example.com"

    sessions.clear()
    assert not sessions.load().signed_in


def test_unknown_role_reads_as_customer():
    assert Session(user_id="u1", role="wizard").user_role == "customer"


def test_file_storage_persists_between_instances(tmp_path):
    path = tmp_path / "state" / "storefront.json"
    CartStore(FileStorage(path)).set(["a", "b"])

    assert CartStore(FileStorage(path)).get() == ["a", "b"]

    FileStorage(path).remove_item("cart")
    assert FileStorage(path).get_item("cart") is None


def test_file_storage_ignores_corrupt_file(tmp_path):
    path = tmp_path / "storefront.json"
    path.write_text("[1, 2")

    assert FileStorage(path).get_item("cart") is None


def test_wrongly_typed_review_fields_are_coerced(storage):
    storage.set_item(
        "reviews_v1",
        '[{"id": "r1", "orderId": "o1", "productId": "p1", "rating": Infinity,'
        ' "reviewerName": 42, "text": 7, "createdAt": "t"},'
        ' {"id": "r2", "orderId": "o2", "productId": "p1", "rating": [5],'
        ' "reviewerName": "Asha", "attachments": "not-a-list", "createdAt": "t"}]',
    )

    reviews = ReviewStore(storage).get_reviews()

    assert [review.reviewer_name for review in reviews] == ["42", "Asha"]
    assert [review.rating for review in reviews] == [0, 0]
    assert reviews[0].text == "7"
    assert reviews[1].attachments == []


def test_non_string_display_name_falls_back_cleanly():
    assert Session(user_id="u1", display_name=1234).reviewer_name == "1234"
    assert Session(user_id="u1", display_name="", email="a@example.com").reviewer_name == (
        "a@example.com"
    )


def test_collection_subclass_appends_by_default(storage):
    class SavedForLater(CartStore):
        key = "saved_v1"

    saved = SavedForLater(storage)
    saved.add("a")
    saved.add("b")

    assert saved.get() == ["a", "b"]
    assert storage.get_item("cart") is None
