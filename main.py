import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database

import auth
import errors
from auth import get_current_user, require_admin
from database import ensure_indexes, get_db
from orders import OrderService, find_course
from schemas import CompletePaymentDTO, CreateOrderDTO, OrderStatusDTO
from settings import ALLOWED_ORIGINS, PRIMARY_CURRENCY, STORE_NAME

# Logging
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger("coursecart")


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        ensure_indexes()
    except Exception as exc:  # pragma: no cover
        logger.warning("Could not create indexes: %s", exc)
    yield


app = FastAPI(title="CourseCart API", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in ALLOWED_ORIGINS] if ALLOWED_ORIGINS else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(auth.router)


def get_order_service(db: Database = Depends(get_db)) -> OrderService:
    return OrderService(db)


# Error handlers
@app.exception_handler(errors.OrderError)
async def order_error_handler(request: Request, exc: errors.OrderError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error: %s", exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# Health and config
@app.get("/")
def root():
    return {"name": STORE_NAME, "status": "ok"}


@app.get("/config")
def get_config():
    return {"storeName": STORE_NAME, "currency": PRIMARY_CURRENCY}


# Courses (read-only lookup used by checkout)
@app.get("/courses/{course_id}")
def get_course(course_id: str, db: Database = Depends(get_db)):
    course = find_course(db, course_id)
    if not course:
        raise HTTPException(status_code=404, detail="Course not found")
    return {"id": str(course["_id"]), "title": course["title"], "price": course.get("price", 0),
            "imageUrl": course.get("imageUrl") or course.get("image")}


# Orders
@app.post("/orders", status_code=201)
def create_order(data: CreateOrderDTO, user: Dict[str, Any] = Depends(get_current_user),
                 service: OrderService = Depends(get_order_service)):
    order = service.create_order(user, data.courseId, data.amount)
    return {"message": "Order created successfully", "order": order}


@app.get("/orders/my-orders")
def my_orders(user: Dict[str, Any] = Depends(get_current_user), service: OrderService = Depends(get_order_service)):
    return {"orders": service.my_orders(user)}


@app.put("/orders/complete-payment/{order_id}")
def complete_payment(order_id: str, data: Optional[CompletePaymentDTO] = None,
                     user: Dict[str, Any] = Depends(get_current_user),
                     service: OrderService = Depends(get_order_service)):
    status = data.status if data else "delivered"
    return {"message": "Payment completed", "order": service.complete_payment(order_id, user, status)}


@app.get("/orders/{order_id}")
def get_order(order_id: str, user: Dict[str, Any] = Depends(get_current_user),
              service: OrderService = Depends(get_order_service)):
    return {"order": service.get_order(order_id, user)}


# Admin
@app.get("/admin/orders")
def admin_list_orders(page: Optional[str] = None, limit: Optional[str] = None, status: Optional[str] = None,
                      search: Optional[str] = None, user: Dict[str, Any] = Depends(require_admin),
                      service: OrderService = Depends(get_order_service)):
    return service.list_orders(page=page, limit=limit, status=status, search=search)


@app.get("/admin/orders/stats")
def admin_order_stats(user: Dict[str, Any] = Depends(require_admin), service: OrderService = Depends(get_order_service)):
    return service.stats()


@app.put("/admin/orders/{order_id}/status")
def admin_update_status(order_id: str, data: OrderStatusDTO, user: Dict[str, Any] = Depends(require_admin),
                        service: OrderService = Depends(get_order_service)):
    order = service.update_status(order_id, data.status, force=data.force, actor=user)
    return {"message": "Order status updated successfully", "order": order}


@app.delete("/admin/orders/{order_id}")
def admin_delete_order(order_id: str, user: Dict[str, Any] = Depends(require_admin),
                       service: OrderService = Depends(get_order_service)):
    service.delete_order(order_id)
    return {"message": "Order deleted successfully"}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
