import os

# Settings are cached on first use; pin them before any timeledger import.
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "timeledger-test-secret")
os.environ.setdefault("ATTENDANCE_TIMEZONE", "Europe/Madrid")
os.environ.setdefault("CLOCK_SEQUENCE_POLICY", "PERMISSIVE")
