import logging
import os
import sys
from datetime import datetime, timedelta, timezone

import bcrypt
import jwt
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError
from starlette.datastructures import Headers
from starlette.exceptions import HTTPException as StarletteHTTPException

from database import (
    ORDERS,
    PRODUCTS,
    USERS,
    connect,
    create_document,
    ensure_indexes,
    get_documents,
    serialize_doc,
)
from schemas import (
    LoginBody,
    Order as OrderSchema,
    OrderUpdate,
    Product as ProductSchema,
    ProductUpdate,
    RegisterBody,
    User as UserSchema,
)

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "shop")
FRONTEND_ORIGIN = os.getenv("FRONTEND_ORIGIN", "http://localhost:5173")
PORT = int(os.getenv("PORT", 5000))
MAX_BODY_BYTES = 10 * 1024 * 1024
BODY_TOO_LARGE = "Request body too large"

# ----------------------- Utils -----------------------
JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
JWT_ALGO = "HS256"
JWT_EXPIRES_MINUTES = os.getenv("JWT_EXPIRES_MINUTES")


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=10)
    return bcrypt.hashpw(password.encode(), salt).decode()


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode(), hashed.encode())
    except ValueError:
        # bcrypt refuses inputs over 72 bytes, none of which can match
        return False


def create_token(payload: dict) -> str:
    to_encode = dict(payload)
    if JWT_EXPIRES_MINUTES:
        to_encode["exp"] = datetime.now(timezone.utc) + timedelta(minutes=int(JWT_EXPIRES_MINUTES))
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGO)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def public_user(user: dict) -> dict:
    return {"id": user["id"], "name": user["name"], "email": user["email"], "role": user["role"]}


def get_db(request: Request) -> Database:
    return request.app.state.db


def parse_id(raw: str, status_code: int) -> int:
    try:
        return int(raw)
    except ValueError:
        raise HTTPException(status_code=status_code, detail=f"Invalid id: {raw}")


# ----------------------- Errors -----------------------
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


async def validation_error_handler(request: Request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        field = ".".join(str(p) for p in err["loc"] if p != "body") or "body"
        problems.append(f"{field}: {err['msg']}")
    return JSONResponse(status_code=400, content={"error": "; ".join(problems)})


class BodySizeLimit:
    """Refuses request bodies over `max_bytes`, whether declared up front in
    Content-Length or streamed in chunks."""

    def __init__(self, app, max_bytes: int):
        self.app = app
        self.max_bytes = max_bytes

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return
        length = Headers(scope=scope).get("content-length")
        if length and length.isdigit() and int(length) > self.max_bytes:
            response = JSONResponse(status_code=413, content={"error": BODY_TOO_LARGE})
            await response(scope, receive, send)
            return

        received = 0

        async def limited_receive():
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self.max_bytes:
                    raise HTTPException(status_code=413, detail=BODY_TOO_LARGE)
            return message

        await self.app(scope, limited_receive, send)


async def log_requests(request: Request, call_next):
    logger.info("%s %s", request.method, request.url.path)
    return await call_next(request)


# ----------------------- Service -----------------------
service = APIRouter()


@service.get("/")
def root():
    return {"message": "Shop API running"}


api = APIRouter(prefix="/api")


# ----------------------- Products -----------------------
@api.get("/products")
def list_products(db: Database = Depends(get_db)):
    try:
        return get_documents(db, PRODUCTS, sort=[("id", -1)])
    except PyMongoError as e:
        raise HTTPException(status_code=500, detail=str(e))


@api.get("/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    product_id = parse_id(product_id, 500)
    try:
        item = db[PRODUCTS].find_one({"id": product_id})
    except PyMongoError as e:
        raise HTTPException(status_code=500, detail=str(e))
    if not item:
        raise HTTPException(status_code=404, detail="Product not found")
    return serialize_doc(item)


@api.post("/products", status_code=201)
def create_product(body: ProductSchema, db: Database = Depends(get_db)):
    try:
        return create_document(db, PRODUCTS, body.model_dump(exclude_none=True))
    except PyMongoError as e:
        raise HTTPException(status_code=400, detail=str(e))


@api.put("/products/{product_id}")
def update_product(product_id: str, body: ProductUpdate, db: Database = Depends(get_db)):
    product_id = parse_id(product_id, 400)
    try:
        if not db[PRODUCTS].find_one({"id": product_id}):
            raise HTTPException(status_code=404, detail="Product not found")
        update = body.model_dump(exclude_unset=True)
        if update.get("stock") is not None and update["stock"] < 0:
            raise HTTPException(status_code=400, detail="Stock cannot be negative")
        update["updatedAt"] = datetime.now(timezone.utc)
        item = db[PRODUCTS].find_one_and_update(
            {"id": product_id}, {"$set": update}, return_document=ReturnDocument.AFTER
        )
    except PyMongoError as e:
        raise HTTPException(status_code=400, detail=str(e))
    # deleted between the lookup and the update
    if not item:
        raise HTTPException(status_code=404, detail="Product not found")
    return serialize_doc(item)


@api.delete("/products/{product_id}")
def delete_product(product_id: str, db: Database = Depends(get_db)):
    """Succeeds whether or not the product existed."""
    product_id = parse_id(product_id, 500)
    try:
        db[PRODUCTS].delete_one({"id": product_id})
    except PyMongoError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"success": True}


# ----------------------- Orders -----------------------
@api.get("/orders")
def list_orders(db: Database = Depends(get_db)):
    try:
        return get_documents(db, ORDERS, sort=[("date", -1)])
    except PyMongoError as e:
        raise HTTPException(status_code=500, detail=str(e))


@api.post("/orders", status_code=201)
def create_order(body: OrderSchema, db: Database = Depends(get_db)):
    try:
        return create_document(db, ORDERS, body.model_dump(exclude_none=True))
    except PyMongoError as e:
        raise HTTPException(status_code=400, detail=str(e))


@api.put("/orders/{order_id}")
def update_order(order_id: str, body: OrderUpdate, db: Database = Depends(get_db)):
    order_id = parse_id(order_id, 400)
    update = body.model_dump(exclude_unset=True)
    update["updatedAt"] = datetime.now(timezone.utc)
    try:
        order = db[ORDERS].find_one_and_update(
            {"id": order_id}, {"$set": update}, return_document=ReturnDocument.AFTER
        )
    except PyMongoError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return serialize_doc(order)


# ----------------------- Auth -----------------------
@api.post("/auth/register")
def register(body: RegisterBody, db: Database = Depends(get_db)):
    try:
        if db[USERS].find_one({"email": body.email}):
            raise HTTPException(status_code=400, detail="User exists")
        user = UserSchema(name=body.name, email=body.email, password=hash_password(body.password))
        stored = create_document(db, USERS, user.model_dump())
    except (PyMongoError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    logger.info("Registered user id=%s", stored["id"])
    token = create_token({"id": stored["id"], "email": stored["email"], "role": stored["role"]})
    return {"token": token, "user": public_user(stored)}


@api.post("/auth/login")
def login(body: LoginBody, db: Database = Depends(get_db)):
    try:
        user = db[USERS].find_one({"email": body.email})
    except PyMongoError as e:
        raise HTTPException(status_code=500, detail=str(e))
    # unknown email and wrong password get the same answer
    if not user or not verify_password(body.password, user["password"]):
        raise HTTPException(status_code=400, detail="Invalid credentials")
    token = create_token({"id": user["id"], "email": user["email"], "role": user["role"]})
    return {"token": token, "user": public_user(user)}


def create_app(db: Database) -> FastAPI:
    app = FastAPI(title="Shop Backend")
    app.state.db = db

    # last added runs first: CORS wraps logging wraps the size check
    app.add_middleware(BodySizeLimit, max_bytes=MAX_BODY_BYTES)
    app.middleware("http")(log_requests)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[FRONTEND_ORIGIN],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    app.include_router(service)
    app.include_router(api)
    return app


def main():
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    try:
        db = connect(DATABASE_URL, DATABASE_NAME)
        ensure_indexes(db)
    except PyMongoError as e:
        logger.error("MongoDB connection failed: %s", e)
        sys.exit(1)

    import uvicorn
    uvicorn.run(create_app(db), host="0.0.0.0", port=PORT)


if __name__ == "__main__":
    main()
