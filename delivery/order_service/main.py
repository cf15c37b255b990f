from fastapi import FastAPI, Depends, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from sqlalchemy import create_engine, Column, String, Float, DateTime, JSON
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from typing import List, Optional
from enum import Enum
import os
from dotenv import load_dotenv
import socket
import logging
import uuid
from datetime import datetime, timezone
import uvicorn
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL_ORDER")
if not DATABASE_URL:
    raise ValueError("DATABASE_URL_ORDER environment variable not set")

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

app = FastAPI(
    title="Order Service API",
    description="Order placement and tracking for the delivery platform",
    version="1.0.0"
)

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    first_error = exc.errors()[0]
    field_location = " -> ".join(map(str, first_error['loc']))
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"message": f"Invalid data in field '{field_location}': {first_error['msg']}"},
    )

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

class OrderStatus(str, Enum):
    PENDING = "pending"
    PREPARING = "preparing"
    ON_THE_WAY = "on-the-way"
    DELIVERED = "delivered"

class Order(Base):
    __tablename__ = "orders"
    id = Column(String, primary_key=True, default=lambda: uuid.uuid4().hex)
    user_id = Column(String, index=True, nullable=False)
    restaurant_id = Column(String, nullable=False)
    items = Column(JSON, nullable=False, default=list)
    total_price = Column(Float, nullable=False)
    status = Column(String, nullable=False, default=OrderStatus.PENDING.value)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

Base.metadata.create_all(bind=engine)

class CamelModel(BaseModel):
    model_config = {"alias_generator": to_camel, "populate_by_name": True, "from_attributes": True}

class OrderItemSchema(CamelModel):
    name: Optional[str] = None
    price: float = Field(..., ge=0, description="Unit price must not be negative.")
    quantity: int = Field(..., gt=0, description="Quantity must be greater than 0.")

class CreateOrderRequest(CamelModel):
    """Client payload; a submitted total (``totalPrice``) is ignored."""
    user_id: str = Field(..., min_length=1)
    restaurant_id: str = Field(..., min_length=1)
    items: List[OrderItemSchema] = Field(default_factory=list)

class StatusUpdateRequest(BaseModel):
    status: OrderStatus

class OrderOut(CamelModel):
    id: str
    user_id: str
    restaurant_id: str
    items: List[OrderItemSchema]
    total_price: float
    status: OrderStatus
    created_at: Optional[datetime] = None

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def calculate_total(items: List[OrderItemSchema]) -> float:
    """Order total is always computed here, as the sum of price x quantity."""
    return round(sum(item.price * item.quantity for item in items), 2)

def serialize(order: Order) -> dict:
    return OrderOut.model_validate(order).model_dump(mode="json", by_alias=True)

def order_not_found():
    return JSONResponse(status_code=404, content={"message": "Order not found"})

@app.post("/orders", summary="Create order", tags=["Order"])
def create_order(req: CreateOrderRequest, db: Session = Depends(get_db)):
    order = Order(
        user_id=req.user_id,
        restaurant_id=req.restaurant_id,
        items=[item.model_dump(mode="json") for item in req.items],
        total_price=calculate_total(req.items),
        status=OrderStatus.PENDING.value,
    )
    db.add(order)
    db.commit()
    db.refresh(order)

    logging.info(f"Order {order.id} created for user {order.user_id}, total {order.total_price}")
    return {"message": "Order created", "order": serialize(order)}

@app.get("/orders/user/{user_id}", summary="Order history of a user", tags=["Order"], response_model=List[OrderOut])
@app.get("/users/{user_id}/orders", summary="Order history of a user", tags=["Order"], response_model=List[OrderOut])
def get_user_orders(user_id: str, db: Session = Depends(get_db)):
    return db.query(Order).filter(Order.user_id == user_id).order_by(Order.created_at).all()

@app.get("/orders/{order_id}", summary="Get order", tags=["Order"], response_model=OrderOut)
def get_order(order_id: str, db: Session = Depends(get_db)):
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        return order_not_found()
    return order

@app.put("/orders/{order_id}/status", summary="Update order status", tags=["Order"])
def update_order_status(order_id: str, req: StatusUpdateRequest, db: Session = Depends(get_db)):
    """Any status may follow any other; there is no enforced progression."""
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        return order_not_found()

    order.status = req.status.value
    db.commit()
    db.refresh(order)
    return {"message": "Status updated", "order": serialize(order)}

@app.get("/health", summary="Health check", tags=["Utility"])
def health_check():
    return {"status": "ok", "service": "order_service"}

def main():
    port = int(os.getenv("PORT", 3003))
    logging.basicConfig(level=logging.INFO)
    hostname = socket.gethostname()
    try:
        local_ip = socket.gethostbyname(hostname)
    except socket.gaierror:
        local_ip = "127.0.0.1"
    logging.info(f"✅ order_service running on http://{local_ip}:{port}")
    uvicorn.run(app, host="0.0.0.0", port=port)

if __name__ == "__main__":
    main()
