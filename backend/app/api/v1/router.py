from fastapi import APIRouter

from backend.app.api.v1.endpoints.health import router as health_router
from backend.app.api.v1.endpoints.products import router as products_router
from backend.app.api.v1.endpoints.suppliers import router as suppliers_router
from backend.app.api.v1.endpoints.customers import router as customers_router
from backend.app.api.v1.endpoints.purchase_orders import router as purchase_orders_router
from backend.app.api.v1.endpoints.customer_orders import router as customer_orders_router
from backend.app.api.v1.endpoints.bills import router as bills_router
from backend.app.api.v1.endpoints.production import router as production_router
from backend.app.api.v1.endpoints.stock import router as stock_router

router = APIRouter()
router.include_router(health_router, tags=["health"])
router.include_router(products_router, tags=["products"])
router.include_router(suppliers_router, tags=["suppliers"])
router.include_router(customers_router, tags=["customers"])
router.include_router(purchase_orders_router, tags=["purchase_orders"])
router.include_router(customer_orders_router, tags=["customer_orders"])
router.include_router(bills_router, tags=["bills"])
router.include_router(production_router, tags=["production"])
router.include_router(stock_router, tags=["stock"])
