from fastapi import APIRouter
from rxledger.api.v1.pharmacy import routes as pharmacy
from rxledger.api.v1.provider import routes as provider

# One router per role; each route is one (role, action) pair
ROLE_ROUTERS = {
    "provider": provider.router,
    "pharmacy": pharmacy.router,
}

api_router = APIRouter()
for role_router in ROLE_ROUTERS.values():
    api_router.include_router(role_router)
