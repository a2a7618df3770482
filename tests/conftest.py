import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("NOTIFICATION_EMAIL_ENABLED", "false")
os.environ.setdefault("ATTENDANCE_TIMEZONE", "America/Santiago")
