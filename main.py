from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from shared.config.database import engine, Base
from shared.observability import setup_observability
from shared.security import limiter

# IMPORTANT: import models so they register with Base
from services.customer_service import models as customer_models  # noqa: F401
from services.legal_service import models as legal_models  # noqa: F401
from services.order_service import models as order_models  # noqa: F401
from services.product_service import models as product_models  # noqa: F401
from services.promo_service import models as promo_models  # noqa: F401

from services.checkout_service.router import router as checkout_router
from services.order_service.router import router as order_router, public_router

app = FastAPI(title="CarParts Checkout", version="1.0.0")

# --- OBSERVABILITY BOOTSTRAP ---
setup_observability(app, "carparts_checkout")

# --- SECURITY SETUP ---
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.on_event("startup")
async def startup_event():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


app.include_router(public_router)
app.include_router(checkout_router, prefix="/checkout", tags=["checkout"])
app.include_router(order_router, prefix="/orders", tags=["orders"])
