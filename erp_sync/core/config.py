import os

# Database Configuration
# Uses default credentials for local Docker Compose setup
DB_URL = os.getenv("DATABASE_URL", "postgres://user:password@db:5432/erp_sync_db")

# Application Metadata
PROJECT_NAME = "Storefront ERP Sync"
VERSION = "2.0.3"

# Event queue
QUEUE_BATCH_SIZE = int(os.getenv("QUEUE_BATCH_SIZE", 10)) # Events processed per worker tick
QUEUE_LOCK_TIMEOUT = int(os.getenv("QUEUE_LOCK_TIMEOUT", 300)) # Seconds before a claim is considered stale
DEAD_LETTER_THRESHOLD = int(os.getenv("DEAD_LETTER_THRESHOLD", 5)) # Max attempts before dead letter
RETRY_DELAYS = [int(d) for d in os.getenv("RETRY_DELAYS", "60,300,900,3600,7200").split(",")] # 1min, 5min, 15min, 1hr, 2hr
QUEUE_RETENTION_DAYS = int(os.getenv("QUEUE_RETENTION_DAYS", 7))
CLEANUP_BATCH_SIZE = int(os.getenv("CLEANUP_BATCH_SIZE", 1000))
DEFAULT_PRIORITY = 5

# Circuit breaker
CIRCUIT_FAILURE_THRESHOLD = int(os.getenv("CIRCUIT_FAILURE_THRESHOLD", 5))
CIRCUIT_FAILURE_WINDOW = int(os.getenv("CIRCUIT_FAILURE_WINDOW", 60)) # Seconds to count failures
CIRCUIT_COOLDOWN = int(os.getenv("CIRCUIT_COOLDOWN", 30)) # Seconds before half-open probe

# Scheduler
WORKER_INTERVAL = int(os.getenv("WORKER_INTERVAL", 300))
HEALTH_CHECK_INTERVAL = int(os.getenv("HEALTH_CHECK_INTERVAL", 300))
CLEANUP_INTERVAL = int(os.getenv("CLEANUP_INTERVAL", 86400)) # Daily
MAX_RETRY_ATTEMPTS = int(os.getenv("MAX_RETRY_ATTEMPTS", 5)) # Saga-level order retries
RETRY_ORDERS_BATCH = int(os.getenv("RETRY_ORDERS_BATCH", 10))

# ERP connection
ERP_BASE_URL = os.getenv("ERP_BASE_URL", "https://erp.local:50000/b1s/v1")
ERP_COMPANY_DB = os.getenv("ERP_COMPANY_DB", "")
ERP_USERNAME = os.getenv("ERP_USERNAME", "")
ERP_PASSWORD = os.getenv("ERP_PASSWORD", "")
ERP_TIMEOUT = float(os.getenv("ERP_TIMEOUT", 30))
ERP_SESSION_TIMEOUT = int(os.getenv("ERP_SESSION_TIMEOUT", 30)) # Minutes
ERP_SESSION_REFRESH_PCT = 0.8 # Refresh at 80% of timeout

# ERP document defaults
DEFAULT_CUSTOMER = os.getenv("DEFAULT_CUSTOMER", "")
DEFAULT_WAREHOUSE = os.getenv("DEFAULT_WAREHOUSE", "WEB-GEN")
SALES_ORDER_SERIES = int(os.getenv("SALES_ORDER_SERIES", 91))
ACCOUNT_CODE = os.getenv("ACCOUNT_CODE", "41110001")
TAX_CODE = os.getenv("TAX_CODE", "VAT@18")
SHIPPING_ITEM_CODE = os.getenv("SHIPPING_ITEM_CODE", "NON-00002")
SHIPPING_TAX_CODE = os.getenv("SHIPPING_TAX_CODE", "VAT@00") # Shipping is always zero-rated
DOC_DUE_DAYS = int(os.getenv("DOC_DUE_DAYS", 7))
TRANSFER_ACCOUNT = os.getenv("TRANSFER_ACCOUNT", "")
CREDIT_CARD_CODE = os.getenv("CREDIT_CARD_CODE", "")
CREDIT_CARD_ACCOUNT = os.getenv("CREDIT_CARD_ACCOUNT", "")

# Feature flags
ENABLE_ORDER_SYNC = os.getenv("ENABLE_ORDER_SYNC", "yes") == "yes"
ENABLE_INVENTORY_SYNC = os.getenv("ENABLE_INVENTORY_SYNC", "yes") == "yes"

# Inbound webhooks
WEBHOOK_SECRET = os.getenv("WEBHOOK_SECRET", "")

# Storefront
STORE_TAX_RATE = float(os.getenv("STORE_TAX_RATE", 0.18))

COD_METHODS = {"cod", "cashondelivery"}
CARD_METHODS = {"resampathpaycorp", "stripe", "paypal"}

PAYMENT_METHOD_MAP = {
    "cod": "Cash On Delivery",
    "cashondelivery": "Cash On Delivery",
    "bacs": "Bank Transfer",
    "cheque": "Cheque",
    "paypal": "Online Transfer",
    "stripe": "Online Transfer",
    "square": "Online Transfer",
    "razorpay": "Online Transfer",
}


def map_payment_method(method: str, title: str = "") -> str:
    """Maps a storefront payment method slug to the ERP payment method name."""
    slug = (method or "").lower()
    if slug in PAYMENT_METHOD_MAP:
        return PAYMENT_METHOD_MAP[slug]

    # Fallback: keyword match on the display title
    title_lower = (title or "").lower()
    if "cash" in title_lower or "cod" in title_lower:
        return "Cash On Delivery"
    if "bank" in title_lower or "wire" in title_lower:
        return "Bank Transfer"
    if "cheque" in title_lower or "check" in title_lower:
        return "Cheque"
    return "Online Transfer"
