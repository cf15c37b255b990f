# user_service.py
import os
import socket
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import uvicorn
from fastapi import FastAPI, Depends, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field
from sqlalchemy import create_engine, Column, String, DateTime
from sqlalchemy.orm import sessionmaker, Session, declarative_base
from dotenv import load_dotenv

from passlib.context import CryptContext
from jose import jwt

load_dotenv()

SECRET_KEY = os.getenv("JWT_SECRET")
if not SECRET_KEY:
    raise ValueError("JWT_SECRET environment variable not set")
ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 24 * 60))

# bcrypt_sha256 avoids bcrypt's 72-byte truncation; plain bcrypt stays for verifying older hashes.
pwd_context = CryptContext(schemes=["bcrypt_sha256", "bcrypt"], deprecated="auto")

DATABASE_URL = os.getenv("DATABASE_URL_USER")
if not DATABASE_URL:
    raise ValueError("DATABASE_URL_USER environment variable not set")

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

app = FastAPI(
    title="User Service API",
    description="User registration and login for the delivery platform",
    version="1.0.0"
)

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report the first invalid field in the same ``{"message": ...}`` shape as other errors."""
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

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: uuid.uuid4().hex)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    password = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=1)

class LoginRequest(BaseModel):
    email: str
    password: str

class Token(BaseModel):
    token: str

def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)

def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Sign ``data`` into a JWT that expires after ``expires_delta`` (one day by default)."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

@app.get("/", response_class=PlainTextResponse, tags=["Utility"])
def root():
    return "User Service Running"

@app.get("/health", tags=["Utility"])
def health_check():
    return {"status": "ok", "service": "user_service"}

@app.post("/auth/register", summary="Register a new user", tags=["Authentication"])
def register_user(user: RegisterRequest, db: Session = Depends(get_db)):
    """Create a user; emails are unique."""
    exists = db.query(User).filter(User.email == user.email).first()
    if exists:
        return JSONResponse(status_code=400, content={"message": "Email already exists"})

    new_user = User(name=user.name, email=user.email, password=get_password_hash(user.password))
    db.add(new_user)
    db.commit()

    logging.info(f"Registered user {new_user.id} ({new_user.email})")
    return {"message": "User registered"}

@app.post("/auth/login", response_model=Token, summary="Log in", tags=["Authentication"])
def login(form_data: LoginRequest, db: Session = Depends(get_db)):
    """
    Check email and password, then hand back a signed token carrying the
    user id and email.
    """
    user = db.query(User).filter(User.email == form_data.email).first()
    if not user:
        return JSONResponse(status_code=404, content={"message": "User not found"})

    if not verify_password(form_data.password, user.password):
        return JSONResponse(status_code=400, content={"message": "Wrong password"})

    token = create_access_token(data={"sub": user.id, "id": user.id, "email": user.email})
    return {"token": token}

Base.metadata.create_all(bind=engine)

def main():
    port = int(os.getenv("PORT", 3001))
    logging.basicConfig(level=logging.INFO)
    hostname = socket.gethostname()
    try:
        local_ip = socket.gethostbyname(hostname)
    except socket.gaierror:
        local_ip = "127.0.0.1"
    logging.info(f"✅ user_service running on http://{local_ip}:{port}")
    uvicorn.run(app, host="0.0.0.0", port=port)

if __name__ == "__main__":
    main()
