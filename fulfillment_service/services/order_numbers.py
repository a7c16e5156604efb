import random
from fulfillment_service.models.base import utcnow
from fulfillment_service.models.order import Order

ORDER_PREFIXES = {
    "SESSION":         "ORD",
    "PRODUCT":         "ORD",
    "PREMIUM_CONTENT": "ORD",
    "EVENT":           "EVT",
    "MEMBERSHIP":      "MEM",
    "COURSE":          "CRS",
}

MAX_ATTEMPTS = 10


def generate_order_number(order_type):
    """PREFIX-YYYYMMDD-NNNN, regenerated while it collides with an existing order."""
    prefix = ORDER_PREFIXES.get(order_type, "ORD")
    day = utcnow().strftime("%Y%m%d")
    for _ in range(MAX_ATTEMPTS):
        candidate = f"{prefix}-{day}-{random.randint(0, 9999):04d}"
        if not Order.query.filter_by(order_number=candidate).first():
            return candidate
    # The unique constraint rejects the rare collision that slips through.
    return f"{prefix}-{day}-{random.randint(10000, 99999)}"
