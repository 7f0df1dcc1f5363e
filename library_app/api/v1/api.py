# library_app/api/v1/api.py
from fastapi import APIRouter

from library_app.api.v1.endpoints import books, members, borrows

api_router_v1 = APIRouter(prefix="/api/v1")

api_router_v1.include_router(books.router, prefix="/books")
api_router_v1.include_router(members.router, prefix="/users")
api_router_v1.include_router(borrows.router, prefix="/borrows")
