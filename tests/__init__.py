import os

os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["API_KEYS"] = ""
os.environ["JWT_SECRET"] = ""
os.environ["JWT_REQUIRED"] = "false"
os.environ["NOTIFICATION_WEBHOOK_URL"] = ""
os.environ.setdefault("LOG_LEVEL", "CRITICAL")
