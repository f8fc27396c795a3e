import enum

class MovementType(str, enum.Enum):
    receipt = "RECEIPT"
    reserve = "RESERVE"
    release = "RELEASE"
    sale = "SALE"
    sale_reversal = "SALE_REVERSAL"
    consumption = "CONSUMPTION"
    adjustment = "ADJUSTMENT"

class POStatus(str, enum.Enum):
    draft = "DRAFT"
    pending = "PENDING"
    approved = "APPROVED"
    shipped = "SHIPPED"
    received = "RECEIVED"
    completed = "COMPLETED"
    cancelled = "CANCELLED"

class OrderStatus(str, enum.Enum):
    pending = "PENDING"
    confirmed = "CONFIRMED"
    processing = "PROCESSING"
    shipped = "SHIPPED"
    delivered = "DELIVERED"
    cancelled = "CANCELLED"
    rejected = "REJECTED"

class BillStatus(str, enum.Enum):
    pending = "PENDING"
    paid = "PAID"
    cancelled = "CANCELLED"

class PaymentStatus(str, enum.Enum):
    pending = "PENDING"
    paid = "PAID"
    refunded = "REFUNDED"

class BatchStatus(str, enum.Enum):
    planned = "PLANNED"
    in_progress = "IN_PROGRESS"
    completed = "COMPLETED"
    cancelled = "CANCELLED"

class StockStatus(str, enum.Enum):
    in_stock = "IN_STOCK"
    low = "LOW"
    critical = "CRITICAL"
    out_of_stock = "OUT_OF_STOCK"
