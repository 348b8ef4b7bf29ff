"""
CourseCart Database Schemas

Each Pydantic model below represents one MongoDB collection. The collection name is the lowercase
class name. Example: class Order -> collection "order".

Orders embed snapshots of the buyer and the course taken at purchase time. Snapshots are written
once and never refreshed from the user or course documents.
"""
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field

OrderStatus = Literal["pending", "processing", "completed", "delivered", "cancelled"]

ORDER_STATUSES = ("pending", "processing", "completed", "delivered", "cancelled")
COMPLETED_STATUSES = ("completed", "delivered")
TERMINAL_STATUSES = ("completed", "delivered", "cancelled")
# Statuses that count as an active or finished purchase for duplicate detection
ACTIVE_STATUSES = ("processing", "completed", "delivered")
DELETABLE_STATUSES = ("pending", "cancelled")
# Anything not cancelled grants access to the course
OWNED_STATUSES = ("pending", "processing", "completed", "delivered")

TRANSITIONS = {
    "pending": ("processing", "completed", "delivered", "cancelled"),
    "processing": ("completed", "delivered", "cancelled"),
    "completed": (),
    "delivered": (),
    "cancelled": (),
}


class User(BaseModel):
    name: str
    email: EmailStr
    phone: Optional[str] = None
    password_hash: str
    role: str = Field("user", description="user | admin | super admin")
    is_active: bool = True


class Course(BaseModel):
    title: str
    price: float = Field(0.0, ge=0)
    imageUrl: Optional[str] = None
    description: Optional[str] = None


class UserSnapshot(BaseModel):
    name: str
    email: EmailStr
    phone: str


class CourseSnapshot(BaseModel):
    title: str
    price: float
    image: str = ""


class Order(BaseModel):
    orderId: str
    courseId: str
    user: UserSnapshot
    course: CourseSnapshot
    amount: float = Field(..., ge=0, description="Charged amount, independent of course.price")
    orderStatus: OrderStatus = "pending"
    orderDate: str = Field(..., description="Calendar day (YYYY-MM-DD) the order was placed")


# Request bodies
class CreateOrderDTO(BaseModel):
    # Optional here so missing fields surface as a ValidationError from the service
    courseId: Optional[str] = None
    amount: Optional[float] = None


class OrderStatusDTO(BaseModel):
    status: Optional[str] = None
    force: bool = False


class CompletePaymentDTO(BaseModel):
    status: Optional[str] = "delivered"
