import os

# Store
STORE_NAME = os.getenv("STORE_NAME", "CourseCart")
PRIMARY_CURRENCY = os.getenv("PRIMARY_CURRENCY", "INR")
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "*").split(",")

# Database
DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "coursecart")

# Security
JWT_SECRET = os.getenv("JWT_SECRET", "devsecret_change_me")
JWT_EXP_MIN = int(os.getenv("JWT_EXP_MIN", "60"))
ADMIN_ROLES = [r.strip() for r in os.getenv("ADMIN_ROLES", "admin,super admin").split(",") if r.strip()]

# Orders
ORDERS_PAGE_SIZE = int(os.getenv("ORDERS_PAGE_SIZE", "10"))
ORDERS_MAX_PAGE_SIZE = int(os.getenv("ORDERS_MAX_PAGE_SIZE", "100"))

# Checkout client
API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8000")
PAYMENT_SIMULATION_DELAY = float(os.getenv("PAYMENT_SIMULATION_DELAY", "2.0"))
STATUS_UPDATE_RETRIES = int(os.getenv("STATUS_UPDATE_RETRIES", "3"))
STATUS_UPDATE_BACKOFF = float(os.getenv("STATUS_UPDATE_BACKOFF", "0.5"))
CLIENT_STORAGE_PATH = os.getenv("CLIENT_STORAGE_PATH", os.path.expanduser("~/.coursecart/storage.json"))
