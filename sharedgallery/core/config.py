import os
import logging
from dotenv import load_dotenv
from botocore.client import Config as BotoConfig
import boto3

# Load .env from project root
try:
    load_dotenv(dotenv_path=os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..", ".env")))
except Exception:
    load_dotenv()


def _env_float(name: str, default: str) -> float:
    return float((os.getenv(name, default) or default).strip())


def _env_int(name: str, default: str) -> int:
    return int((os.getenv(name, default) or default).strip())


def _clean(value: str) -> str:
    return (value or "").strip().strip('"').strip("'").strip('`')


# Record store
DATABASE_URL = _clean(os.getenv("DATABASE_URL", "")) or "sqlite:///./sharedgallery.db"
IMAGES_TABLE = "images"

# Object store (Cloudflare R2 / any S3-compatible endpoint)
R2_ACCOUNT_ID = os.getenv("R2_ACCOUNT_ID", "")
R2_ACCESS_KEY_ID = os.getenv("R2_ACCESS_KEY_ID", "")
R2_SECRET_ACCESS_KEY = os.getenv("R2_SECRET_ACCESS_KEY", "")
R2_BUCKET = os.getenv("R2_BUCKET", "")
R2_ENDPOINT_URL = _clean(os.getenv("R2_ENDPOINT_URL", "")) or (
    f"https://{R2_ACCOUNT_ID}.r2.cloudflarestorage.com" if R2_ACCOUNT_ID else ""
)
R2_PUBLIC_BASE_URL = _clean(os.getenv("R2_PUBLIC_BASE_URL", "")).rstrip("/")
STORAGE_CACHE_CONTROL = os.getenv("STORAGE_CACHE_CONTROL", "3600").strip()

# Upload pipeline
UPLOAD_CONCURRENCY = _env_int("UPLOAD_CONCURRENCY", "5")
COMPRESS_MAX_WIDTH = _env_int("COMPRESS_MAX_WIDTH", "1920")
COMPRESS_MAX_HEIGHT = _env_int("COMPRESS_MAX_HEIGHT", "1920")
COMPRESS_QUALITY = _env_int("COMPRESS_QUALITY", "85")
COMPRESS_MIN_BYTES = _env_int("COMPRESS_MIN_BYTES", str(100 * 1024))

# Gallery sync
POLL_INTERVAL_SEC = _env_float("POLL_INTERVAL_SEC", "30")

# Duplicate audit / webhook reports
DUPLICATE_WEBHOOK_URL = _clean(os.getenv("DUPLICATE_WEBHOOK_URL", ""))
AUDIT_MAX_GROUPS = _env_int("AUDIT_MAX_GROUPS", "10")
AUDIT_EMBEDS_PER_MESSAGE = _env_int("AUDIT_EMBEDS_PER_MESSAGE", "10")
AUDIT_BATCH_DELAY_SEC = _env_float("AUDIT_BATCH_DELAY_SEC", "1.0")
AUDIT_INTERVAL_MIN = _env_float("AUDIT_INTERVAL_MIN", "60")
RUN_DUPLICATE_AUDIT = (os.getenv("RUN_DUPLICATE_AUDIT") or "0").strip() == "1"

# Local durable key-value store (uploader identity, pending upload ledger)
LOCAL_STORE_PATH = os.path.expanduser(
    os.getenv("LOCAL_STORE_PATH", os.path.join("~", ".sharedgallery", "local_storage.json"))
)

# Logging
logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)s | %(message)s")
logger = logging.getLogger("sharedgallery")

# Static dir helper (local object store fallback)
STATIC_DIR = os.path.abspath(os.getenv("STATIC_DIR", "") or os.path.join(os.path.dirname(__file__), "..", "..", "static"))

# S3/R2 client for storage operations
s3 = None

if R2_ENDPOINT_URL and R2_ACCESS_KEY_ID and R2_SECRET_ACCESS_KEY and R2_BUCKET:
    s3 = boto3.client(
        "s3",
        endpoint_url=R2_ENDPOINT_URL,
        aws_access_key_id=R2_ACCESS_KEY_ID,
        aws_secret_access_key=R2_SECRET_ACCESS_KEY,
        config=BotoConfig(signature_version="s3v4"),
        region_name="auto",
    )
