import os
from dotenv import load_dotenv
import json
from pathlib import Path

# Load environment variables from .env file in project root
_project_root = Path(__file__).resolve().parent.parent
load_dotenv(_project_root / ".env")

class Config:
    """Configuration management for the RyderX booking client."""

    # Remote API
    API_URL = os.getenv("RYDERX_API_URL")
    HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "15"))

    # Client-local persisted state (countdown anchors, auth data)
    STATE_DIR = Path(os.getenv("RYDERX_STATE_DIR", str(Path.home() / ".ryderx"))).expanduser()

    # Payment hold countdown. Must mirror the server's own hold-expiry window.
    HOLD_WINDOW_SECONDS = int(os.getenv("HOLD_WINDOW_SECONDS", "600"))
    COUNTDOWN_TICK_SECONDS = float(os.getenv("COUNTDOWN_TICK_SECONDS", "1"))

    # Hosted checkout
    CHECKOUT_PAYMENT_METHOD = os.getenv("CHECKOUT_PAYMENT_METHOD", "Stripe")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def validate(cls):
        """Check for missing critical keys."""
        missing = []
        if not cls.API_URL:
            missing.append("RYDERX_API_URL (base URL of the reservations API)")

        if missing:
            print(f"Warning: Missing keys: {', '.join(missing)}")
            print("Please create a .env file based on .env.example")
            return False
        return True

    @classmethod
    def countdown_file(cls) -> Path:
        return cls.STATE_DIR / "countdowns.json"

    @classmethod
    def auth_file(cls) -> Path:
        return cls.STATE_DIR / "auth.json"

def setup_logging(level="INFO"):
    """Configure structured JSON logging."""
    import logging
    import sys

    # Create a handler that writes to stdout
    handler = logging.StreamHandler(sys.stdout)

    # Use a custom formatter for JSON output
    class JsonFormatter(logging.Formatter):
        def format(self, record):
            log_record = {
                "timestamp": self.formatTime(record, self.datefmt),
                "level": record.levelname,
                "message": record.getMessage(),
                "module": record.module,
                "function": record.funcName,
            }
            if hasattr(record, "reservation_id"):
                log_record["reservation_id"] = record.reservation_id
            if record.exc_info:
                log_record["exception"] = self.formatException(record.exc_info)
            return json.dumps(log_record)

    handler.setFormatter(JsonFormatter())

    # Configure root logger
    root = logging.getLogger()
    root.setLevel(level)
    # Remove existing handlers to avoid duplication
    if root.handlers:
        for h in list(root.handlers):
            root.removeHandler(h)
    root.addHandler(handler)
