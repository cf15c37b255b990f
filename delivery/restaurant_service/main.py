# restaurant_service.py

from fastapi import FastAPI, Depends, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel
from sqlalchemy import create_engine, Column, String, Float, DateTime, ForeignKey
from sqlalchemy.orm import sessionmaker, Session, declarative_base
from typing import List, Optional
import os
from dotenv import load_dotenv
import logging
import socket
import uuid
from datetime import datetime, timezone

import uvicorn
from fastapi.middleware.cors import CORSMiddleware
load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL_RESTAURANT")
if not DATABASE_URL:
    raise ValueError("DATABASE_URL_RESTAURANT environment variable not set")

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

app = FastAPI(
    title="Restaurant Service API",
    description="Restaurants and their menus for the delivery platform",
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
    allow_methods=["*"],
    allow_headers=["*"],
)

def utcnow():
    return datetime.now(timezone.utc)

class Restaurant(Base):
    __tablename__ = "restaurants"
    id = Column(String, primary_key=True, index=True, default=lambda: uuid.uuid4().hex)
    name = Column(String, nullable=False)
    address = Column(String, nullable=False)
    cuisine = Column(String, nullable=True)
    image = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

class MenuItem(Base):
    __tablename__ = "menu_items"
    id = Column(String, primary_key=True, index=True, default=lambda: uuid.uuid4().hex)
    restaurant_id = Column(String, ForeignKey("restaurants.id", ondelete="CASCADE"), index=True, nullable=False)
    name = Column(String, nullable=False)
    price = Column(Float, nullable=False)
    category = Column(String, nullable=True)
    image = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

Base.metadata.create_all(bind=engine)

# Wire format is camelCase (restaurantId, createdAt); snake_case is accepted on input too.
class CamelModel(BaseModel):
    model_config = {"alias_generator": to_camel, "populate_by_name": True, "from_attributes": True}

class RestaurantCreate(CamelModel):
    name: str = Field(..., min_length=1, description="Restaurant name")
    address: str = Field(..., min_length=1, description="Street address")
    cuisine: Optional[str] = None
    image: Optional[str] = None

class RestaurantUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1)
    address: Optional[str] = Field(default=None, min_length=1)
    cuisine: Optional[str] = None
    image: Optional[str] = None

    @field_validator('name', 'address')
    @classmethod
    def required_not_null(cls, v):
        if v is None:
            raise ValueError("Field may be omitted but not null")
        return v

class RestaurantOut(RestaurantCreate):
    id: str
    created_at: Optional[datetime] = None

class MenuItemCreate(CamelModel):
    name: str = Field(..., min_length=1, description="Dish name")
    price: float = Field(..., ge=0, description="Price must not be negative")
    category: Optional[str] = None
    image: Optional[str] = None

class MenuItemUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1)
    price: Optional[float] = Field(default=None, ge=0)
    category: Optional[str] = None
    image: Optional[str] = None

    @field_validator('name', 'price')
    @classmethod
    def required_not_null(cls, v):
        if v is None:
            raise ValueError("Field may be omitted but not null")
        return v

class MenuItemOut(MenuItemCreate):
    id: str
    restaurant_id: str
    created_at: Optional[datetime] = None

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def restaurant_not_found():
    return JSONResponse(status_code=404, content={"message": "Restaurant not found"})

def menu_item_not_found():
    return JSONResponse(status_code=404, content={"message": "Menu item not found"})

def dump(model: CamelModel) -> dict:
    return model.model_dump(mode="json", by_alias=True)

# --------- RESTAURANT ROUTES ---------

@app.post("/restaurants", summary="Create restaurant", tags=["Restaurant"])
def create_restaurant(restaurant: RestaurantCreate, db: Session = Depends(get_db)):
    new_restaurant = Restaurant(**restaurant.model_dump())
    db.add(new_restaurant)
    db.commit()
    db.refresh(new_restaurant)
    return {"message": "Restaurant created", "restaurant": dump(RestaurantOut.model_validate(new_restaurant))}

@app.get("/restaurants", summary="List restaurants", tags=["Restaurant"], response_model=List[RestaurantOut])
def list_restaurants(db: Session = Depends(get_db)):
    return db.query(Restaurant).order_by(Restaurant.created_at).all()

@app.get("/restaurants/{restaurant_id}", summary="Get restaurant", tags=["Restaurant"], response_model=RestaurantOut)
def get_restaurant(restaurant_id: str, db: Session = Depends(get_db)):
    restaurant = db.query(Restaurant).filter(Restaurant.id == restaurant_id).first()
    if not restaurant:
        return restaurant_not_found()
    return restaurant

@app.put("/restaurants/{restaurant_id}", summary="Update restaurant", tags=["Restaurant"])
def update_restaurant(restaurant_id: str, changes: RestaurantUpdate, db: Session = Depends(get_db)):
    """Apply only the fields present in the request body."""
    restaurant = db.query(Restaurant).filter(Restaurant.id == restaurant_id).first()
    if not restaurant:
        return restaurant_not_found()

    for field, value in changes.model_dump(exclude_unset=True).items():
        setattr(restaurant, field, value)
    db.commit()
    db.refresh(restaurant)
    return {"message": "Restaurant updated", "restaurant": dump(RestaurantOut.model_validate(restaurant))}

@app.delete("/restaurants/{restaurant_id}", summary="Delete restaurant", tags=["Restaurant"])
def delete_restaurant(restaurant_id: str, db: Session = Depends(get_db)):
    """Delete a restaurant together with its menu."""
    restaurant = db.query(Restaurant).filter(Restaurant.id == restaurant_id).first()
    if not restaurant:
        return restaurant_not_found()

    db.query(MenuItem).filter(MenuItem.restaurant_id == restaurant_id).delete()
    db.delete(restaurant)
    db.commit()
    return {"message": "Restaurant deleted"}

# --------- MENU ROUTES ---------

@app.post("/restaurants/{restaurant_id}/menu", summary="Add menu item", tags=["Menu"])
def create_menu_item(restaurant_id: str, item: MenuItemCreate, db: Session = Depends(get_db)):
    if not db.query(Restaurant).filter(Restaurant.id == restaurant_id).first():
        return restaurant_not_found()

    menu_item = MenuItem(restaurant_id=restaurant_id, **item.model_dump())
    db.add(menu_item)
    db.commit()
    db.refresh(menu_item)
    return {"message": "Menu item added", "menuItem": dump(MenuItemOut.model_validate(menu_item))}

@app.get("/restaurants/{restaurant_id}/menu", summary="Restaurant menu", tags=["Menu"], response_model=List[MenuItemOut])
def get_menu(restaurant_id: str, db: Session = Depends(get_db)):
    return db.query(MenuItem).filter(MenuItem.restaurant_id == restaurant_id).order_by(MenuItem.created_at).all()

@app.get("/restaurants/{restaurant_id}/menu/{item_id}", summary="Get menu item", tags=["Menu"], response_model=MenuItemOut)
def get_menu_item(restaurant_id: str, item_id: str, db: Session = Depends(get_db)):
    menu_item = db.query(MenuItem).filter(MenuItem.id == item_id, MenuItem.restaurant_id == restaurant_id).first()
    if not menu_item:
        return menu_item_not_found()
    return menu_item

@app.put("/restaurants/{restaurant_id}/menu/{item_id}", summary="Update menu item", tags=["Menu"])
def update_menu_item(restaurant_id: str, item_id: str, changes: MenuItemUpdate, db: Session = Depends(get_db)):
    menu_item = db.query(MenuItem).filter(MenuItem.id == item_id, MenuItem.restaurant_id == restaurant_id).first()
    if not menu_item:
        return menu_item_not_found()

    for field, value in changes.model_dump(exclude_unset=True).items():
        setattr(menu_item, field, value)
    db.commit()
    db.refresh(menu_item)
    return {"message": "Menu item updated", "menuItem": dump(MenuItemOut.model_validate(menu_item))}

@app.delete("/restaurants/{restaurant_id}/menu/{item_id}", summary="Delete menu item", tags=["Menu"])
def delete_menu_item(restaurant_id: str, item_id: str, db: Session = Depends(get_db)):
    menu_item = db.query(MenuItem).filter(MenuItem.id == item_id, MenuItem.restaurant_id == restaurant_id).first()
    if not menu_item:
        return menu_item_not_found()

    db.delete(menu_item)
    db.commit()
    return {"message": "Menu item deleted"}

@app.get("/health", summary="Health check", tags=["Utility"])
def health_check():
    return {"status": "ok", "service": "restaurant_service"}

def main():
    port = int(os.getenv("PORT", 3002))
    logging.basicConfig(level=logging.INFO)
    hostname = socket.gethostname()
    try:
        local_ip = socket.gethostbyname(hostname)
    except socket.gaierror:
        local_ip = "127.0.0.1"
    logging.info(f"✅ restaurant_service running on http://{local_ip}:{port}")
    uvicorn.run(app, host="0.0.0.0", port=port)

if __name__ == "__main__":
    main()
