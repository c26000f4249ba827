import os

# Must be set before molle_payments.database is imported.
os.environ.setdefault("DATABASE_URL", "sqlite:///./test_app.db")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
