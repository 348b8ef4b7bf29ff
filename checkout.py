"""
Checkout state machine.

`CheckoutSession` is an immutable, serializable snapshot of one browser tab's checkout. Every user
action is an event, and `transition(session, event)` returns the next session without side
effects. A refused transition returns the same step with `error` set.

`Checkout` wires the pure machine to the order API, the purchased-courses cache and local
storage, and runs the payment sequence:

    create order -> tentative purchase -> simulated payment -> status update -> clear cart
    -> reconcile purchases -> confirmation
"""
import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict

from client import ApiError, OrdersApi
from purchases import LocalStorage, PurchasedCourses
from settings import PAYMENT_SIMULATION_DELAY, STATUS_UPDATE_BACKOFF, STATUS_UPDATE_RETRIES

logger = logging.getLogger("coursecart.checkout")


class CheckoutStep(str, Enum):
    CART = "cart"
    BILLING = "billing"
    PAYMENT = "payment"
    CONFIRMATION = "confirmation"


BILLING_FIELDS = ("name", "email", "phone")
CARD_FIELDS = ("cardNumber", "cardExpiry", "cardCvv", "cardName")
BANK_FIELDS = ("bankName", "accountNumber", "ifscCode")


def _filled(value: Optional[str]) -> bool:
    return bool(value and value.strip())


def price_of(value: Any) -> float:
    """Course prices may be numbers, numeric strings or "Free"."""
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


class CartCourse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    price: Any = 0
    imageUrl: Optional[str] = None


class BillingDetails(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = ""
    email: str = ""
    phone: str = ""

    def missing(self) -> List[str]:
        return [f for f in BILLING_FIELDS if not _filled(getattr(self, f))]

    @classmethod
    def from_profile(cls, profile: Dict[str, Any]) -> "BillingDetails":
        return cls(
            name=profile.get("name") or "",
            email=profile.get("email") or "",
            phone=profile.get("phone") or profile.get("mobile") or "",
        )


class PaymentDetails(BaseModel):
    model_config = ConfigDict(frozen=True)

    paymentMethod: str = "credit-card"
    cardNumber: str = ""
    cardExpiry: str = ""
    cardCvv: str = ""
    cardName: str = ""
    upiId: str = ""
    bankName: str = ""
    accountNumber: str = ""
    ifscCode: str = ""
    acceptTerms: bool = False

    def is_valid(self) -> bool:
        if not self.acceptTerms:
            return False
        if self.paymentMethod in ("credit-card", "debit-card"):
            return all(_filled(getattr(self, f)) for f in CARD_FIELDS)
        if self.paymentMethod == "upi":
            return _filled(self.upiId)
        if self.paymentMethod == "net-banking":
            return all(_filled(getattr(self, f)) for f in BANK_FIELDS)
        return self.paymentMethod == "free"


class CheckoutSession(BaseModel):
    model_config = ConfigDict(frozen=True)

    cartItems: List[CartCourse] = []
    selectedCourse: Optional[CartCourse] = None
    currentStep: CheckoutStep = CheckoutStep.CART
    billingDetails: BillingDetails = BillingDetails()
    paymentDetails: PaymentDetails = PaymentDetails()
    orderSummary: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    def in_cart(self, course_id: str) -> bool:
        return any(c.id == course_id for c in self.cartItems)

    def total_price(self) -> float:
        return sum(price_of(c.price) for c in self.cartItems)

    def item_count(self) -> int:
        return len(self.cartItems)


# Events
class AddToCart(BaseModel):
    course: CartCourse


class RemoveFromCart(BaseModel):
    course_id: str


class ClearCart(BaseModel):
    pass


class SelectCourse(BaseModel):
    course_id: str


class LoadBilling(BaseModel):
    profile: Dict[str, Any]


class SubmitBilling(BaseModel):
    pass


class UpdatePayment(BaseModel):
    details: Dict[str, Any]


class PaymentFailed(BaseModel):
    message: str


class PaymentConfirmed(BaseModel):
    order: Dict[str, Any]


class GoBack(BaseModel):
    pass


class Reset(BaseModel):
    pass


Event = Union[AddToCart, RemoveFromCart, ClearCart, SelectCourse, LoadBilling, SubmitBilling,
              UpdatePayment, PaymentFailed, PaymentConfirmed, GoBack, Reset]


def _refuse(session: CheckoutSession, message: str) -> CheckoutSession:
    return session.model_copy(update={"error": message})


def _reset(session: CheckoutSession) -> CheckoutSession:
    return CheckoutSession(cartItems=session.cartItems)


def transition(session: CheckoutSession, event: Event) -> CheckoutSession:
    step = session.currentStep

    if isinstance(event, AddToCart):
        if session.in_cart(event.course.id):
            return _refuse(session, "This course is already in your cart!")
        return session.model_copy(update={"cartItems": session.cartItems + [event.course], "error": None})

    if isinstance(event, RemoveFromCart):
        items = [c for c in session.cartItems if c.id != event.course_id]
        return session.model_copy(update={"cartItems": items, "error": None})

    if isinstance(event, ClearCart):
        return session.model_copy(update={"cartItems": []})

    if isinstance(event, SelectCourse):
        if step != CheckoutStep.CART:
            return _refuse(session, "Finish or cancel the current checkout first")
        course = next((c for c in session.cartItems if c.id == event.course_id), None)
        if course is None:
            return _refuse(session, "Course is not in your cart")
        return session.model_copy(update={"selectedCourse": course, "currentStep": CheckoutStep.BILLING,
                                          "error": None})

    if isinstance(event, LoadBilling):
        return session.model_copy(update={"billingDetails": BillingDetails.from_profile(event.profile)})

    if isinstance(event, SubmitBilling):
        if step != CheckoutStep.BILLING or session.selectedCourse is None:
            return _refuse(session, "Select a course before entering billing details")
        missing = session.billingDetails.missing()
        if missing:
            return _refuse(session, f"Your profile is missing: {', '.join(missing)}. Update it before paying.")
        return session.model_copy(update={"currentStep": CheckoutStep.PAYMENT, "error": None})

    if isinstance(event, UpdatePayment):
        known = {k: v for k, v in event.details.items() if k in PaymentDetails.model_fields}
        details = session.paymentDetails.model_copy(update=known)
        return session.model_copy(update={"paymentDetails": details})

    if isinstance(event, PaymentFailed):
        if step != CheckoutStep.PAYMENT:
            return session
        return session.model_copy(update={"error": event.message})

    if isinstance(event, PaymentConfirmed):
        if step != CheckoutStep.PAYMENT or session.selectedCourse is None:
            return _refuse(session, "No payment in progress")
        return session.model_copy(update={"currentStep": CheckoutStep.CONFIRMATION, "orderSummary": event.order,
                                          "error": None})

    if isinstance(event, GoBack):
        if step == CheckoutStep.PAYMENT:
            return session.model_copy(update={"currentStep": CheckoutStep.BILLING, "error": None})
        return _reset(session)

    if isinstance(event, Reset):
        return _reset(session)

    raise TypeError(f"Unknown checkout event {event!r}")


class Checkout:
    """Stateful driver for one user's checkout."""

    CART_KEY = "cart"

    def __init__(self, api: OrdersApi, storage: LocalStorage, purchases: Optional[PurchasedCourses] = None,
                 payment_delay: float = PAYMENT_SIMULATION_DELAY, retries: int = STATUS_UPDATE_RETRIES,
                 backoff: float = STATUS_UPDATE_BACKOFF, sleep: Callable[[float], None] = time.sleep):
        self.api = api
        self.storage = storage
        self.purchases = purchases or PurchasedCourses(storage)
        self.payment_delay = payment_delay
        self.retries = retries
        self.backoff = backoff
        self.sleep = sleep
        # Only the cart survives a reload; a fresh load always starts at the cart step
        self.session = CheckoutSession(cartItems=self._load_cart())

    def _load_cart(self) -> List[CartCourse]:
        items = []
        for raw in self.storage.get(self.CART_KEY, []) or []:
            try:
                items.append(CartCourse(**raw))
            except (TypeError, ValueError) as exc:
                logger.error("Dropping unreadable cart item %r: %s", raw, exc)
        return items

    def dispatch(self, event: Event) -> CheckoutSession:
        previous = self.session
        self.session = transition(previous, event)
        if self.session.cartItems != previous.cartItems:
            if self.session.cartItems:
                self.storage.set(self.CART_KEY, [c.model_dump() for c in self.session.cartItems])
            else:
                self.storage.remove(self.CART_KEY)
        return self.session

    @property
    def step(self) -> CheckoutStep:
        return self.session.currentStep

    def start(self) -> CheckoutSession:
        """Reconcile purchases with the server, as done on every page load."""
        try:
            self.purchases.reconcile(self.api)
        except ApiError as exc:
            logger.error("Error loading purchased courses: %s", exc)
        return self.session

    # Cart
    def add_to_cart(self, course: Union[CartCourse, Dict[str, Any]]) -> bool:
        if not isinstance(course, CartCourse):
            course = CartCourse(**course)
        if self.purchases.is_purchased(course.id):
            self.session = _refuse(self.session, "You have already purchased this course!")
            return False
        return self.dispatch(AddToCart(course=course)).error is None

    def remove_from_cart(self, course_id: str) -> CheckoutSession:
        return self.dispatch(RemoveFromCart(course_id=course_id))

    def clear_cart(self) -> CheckoutSession:
        return self.dispatch(ClearCart())

    # Steps
    def buy_now(self, course_id: str) -> CheckoutSession:
        return self.dispatch(SelectCourse(course_id=course_id))

    def load_billing(self) -> CheckoutSession:
        """Billing fields are read from the account of record, never typed in."""
        try:
            profile = self.api.me()
        except ApiError as exc:
            self.session = _refuse(self.session, exc.message)
            return self.session
        return self.dispatch(LoadBilling(profile=profile))

    def submit_billing(self) -> CheckoutSession:
        return self.dispatch(SubmitBilling())

    def update_payment(self, **details) -> CheckoutSession:
        return self.dispatch(UpdatePayment(details=details))

    def back(self) -> CheckoutSession:
        return self.dispatch(GoBack())

    def reset(self) -> CheckoutSession:
        return self.dispatch(Reset())

    def _complete_payment(self, order_id: str) -> bool:
        delay = self.backoff
        for attempt in range(1, self.retries + 1):
            try:
                self.api.complete_payment(order_id)
                return True
            except ApiError as exc:
                if exc.is_client_error or attempt == self.retries:
                    logger.error("Order status update failed for %s (attempt %d): %s", order_id, attempt, exc)
                    return False
                logger.warning("Order status update failed for %s (attempt %d), retrying in %.1fs",
                               order_id, attempt, delay)
                self.sleep(delay)
                delay *= 2
        return False

    def pay(self) -> CheckoutSession:
        session = self.session
        course = session.selectedCourse
        if session.currentStep != CheckoutStep.PAYMENT or course is None:
            self.session = _refuse(session, "No payment in progress")
            return self.session
        if not session.paymentDetails.is_valid():
            return self.dispatch(PaymentFailed(message="Please complete your payment details and accept the terms"))

        try:
            order = self.api.create_order(course.id, price_of(course.price))
        except ApiError as exc:
            logger.error("Order creation failed for course %s: %s", course.id, exc)
            message = exc.message if exc.is_client_error else "Something went wrong, please try again"
            return self.dispatch(PaymentFailed(message=message))

        self.purchases.add_tentative(course.model_dump())
        self.sleep(self.payment_delay)

        synced = self._complete_payment(order["id"])
        if not synced:
            # Payment already went through for the user; the order stays pending until an admin fixes it
            logger.warning("Order %s paid but its status could not be updated; it remains %s",
                           order.get("orderId"), order.get("orderStatus"))

        self.dispatch(ClearCart())
        try:
            self.purchases.reconcile(self.api)
        except ApiError as exc:
            logger.error("Error reconciling purchased courses: %s", exc)

        return self.dispatch(PaymentConfirmed(order=dict(order, statusSynced=synced)))
