import logging
from typing import Dict, Iterable, List, Optional

from storefront.collections import CartStore, WishlistStore, is_valid_id
from storefront.errors import AuthenticationRequired, SignInRequired
from storefront.events import EventBus
from storefront.orders import OrderRecord, OrderStore
from storefront.remote import ApiClient, OrdersMirror, ReviewsMirror, WishlistMirror
from storefront.reviews import ReviewRecord, ReviewStore
from storefront.session import Session, SessionStore
from storefront.storage import MemoryStorage

logger = logging.getLogger(__name__)


class Storefront:
    """Local stores plus best-effort remote mirroring for the signed-in user.

    Local state always reflects what the user did. When a user is signed in
    the remote call goes first; if it fails the local change is still made
    and the skipped sync is logged.
    """

    def __init__(self, storage=None, bus: Optional[EventBus] = None, api: Optional[ApiClient] = None):
        self.storage = storage if storage is not None else MemoryStorage()
        self.bus = bus if bus is not None else EventBus()
        self.cart = CartStore(self.storage, self.bus)
        self.wishlist = WishlistStore(self.storage, self.bus)
        self.orders = OrderStore(self.storage, self.bus)
        self.reviews = ReviewStore(self.storage, self.bus)
        self.sessions = SessionStore(self.storage, self.bus)

        self.api = api if api is not None else ApiClient()
        self.wishlist_remote = WishlistMirror(self.api)
        self.orders_remote = OrdersMirror(self.api)
        self.reviews_remote = ReviewsMirror(self.api)

    @property
    def session(self) -> Session:
        return self.sessions.load()

    def _user_id(self) -> Optional[str]:
        session = self.session
        return session.user_id if session.signed_in else None

    def _log_skipped(self, action: str, target, reason) -> None:
        logger.warning("Skipped remote %s for %s: %s", action, target, reason)

    # Session

    def sign_in(self, email: str, password: str) -> Session:
        session = Session.from_login(self.api.login(email, password))
        self.sessions.save(session)
        return session

    def sign_out(self) -> None:
        self.sessions.clear()

    # Wishlist

    def add_to_wishlist(self, product_id) -> None:
        if not is_valid_id(product_id):
            return
        product_id = str(product_id).strip()
        user_id = self._user_id()
        if user_id:
            try:
                if not self.wishlist_remote.add_remote(user_id, product_id):
                    self._log_skipped("wishlist add", product_id, "remote rejected")
            except Exception as exc:
                self._log_skipped("wishlist add", product_id, exc)
        self.wishlist.add(product_id)

    def remove_from_wishlist(self, product_id) -> None:
        if not is_valid_id(product_id):
            return
        product_id = str(product_id).strip()
        user_id = self._user_id()
        if user_id:
            try:
                if not self.wishlist_remote.remove_remote(user_id, product_id):
                    self._log_skipped("wishlist remove", product_id, "remote rejected")
            except Exception as exc:
                self._log_skipped("wishlist remove", product_id, exc)
        self.wishlist.remove(product_id)

    def toggle_wishlist(self, product_id) -> bool:
        """Toggle membership and return whether the product is now wishlisted.

        Never raises; the result always matches the local store afterwards.
        """
        if not is_valid_id(product_id):
            return False
        product_id = str(product_id).strip()
        wanted = not self.wishlist.is_present(product_id)
        user_id = self._user_id()
        if user_id:
            try:
                present = self.wishlist_remote.toggle_remote(user_id, product_id)
            except Exception as exc:
                self._log_skipped("wishlist toggle", product_id, exc)
            else:
                if present != wanted:
                    self._log_skipped("wishlist toggle", product_id, "remote state diverged")
        if wanted:
            self.wishlist.add(product_id)
        else:
            self.wishlist.remove(product_id)
        return self.wishlist.is_present(product_id)

    def refresh_wishlist(self) -> List[str]:
        """Merge the remote wishlist into the local one, local entries first."""
        user_id = self._user_id()
        local = self.wishlist.get()
        if not user_id:
            return local
        remote = self.wishlist_remote.fetch_remote(user_id)
        merged = local + [product_id for product_id in remote if product_id not in local]
        if merged != local:
            return self.wishlist.set(merged)
        return local

    # Orders

    def checkout(self, products: Iterable[Dict], quantity: int = 1) -> List[OrderRecord]:
        session = self.session
        if not session.signed_in:
            raise SignInRequired("Sign in to place an order.")

        placed: List[OrderRecord] = []
        for product in products:
            product_id = (product or {}).get("id")
            if not is_valid_id(product_id):
                continue
            try:
                if self.orders_remote.add_remote(session.user_id, product, quantity) is None:
                    self._log_skipped("order", product_id, "remote rejected")
            except Exception as exc:
                self._log_skipped("order", product_id, exc)
            order = self.orders.add_order(product)
            if order is not None:
                placed.append(order)
                self.cart.remove(product_id)
        return placed

    def cancel_order(self, order: OrderRecord) -> None:
        user_id = self._user_id()
        if user_id:
            try:
                # Local order ids are not known remotely, so match on the product.
                if not self.orders_remote.remove_remote(user_id, product_id=order.product_id):
                    self._log_skipped("order removal", order.id, "nothing deleted")
            except Exception as exc:
                self._log_skipped("order removal", order.id, exc)
        self.orders.remove_order(order.id)

    def load_orders(self) -> List[OrderRecord]:
        user_id = self._user_id()
        if user_id:
            remote = self.orders_remote.fetch_remote(user_id)
            if remote:
                return remote
        return self.orders.get_orders()

    # Reviews

    def submit_review(
        self,
        order_id,
        product_id,
        rating,
        text: str = "",
        attachments: Optional[List[str]] = None,
    ) -> Optional[ReviewRecord]:
        session = self.session
        if not session.authenticated:
            raise AuthenticationRequired("Sign in to leave a review.")

        review = self.reviews.add_review(
            order_id,
            product_id,
            rating,
            text=text,
            attachments=attachments,
            reviewer_name=session.reviewer_name,
        )
        if review is None:
            return None
        try:
            if self.reviews_remote.submit_remote(session.token, review) is None:
                self._log_skipped("review", review.id, "remote rejected")
        except Exception as exc:
            self._log_skipped("review", review.id, exc)
        return review
