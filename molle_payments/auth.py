import os
from pathlib import Path
from dotenv import load_dotenv
from fastapi import Header, HTTPException
from jose import JWTError, jwt

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")


def verify_token(authorization: str = Header(...)):
    """Accept a bearer JWT issued by the main app and return its claims."""
    secret = os.getenv("JWT_SECRET")
    try:
        scheme, token = authorization.split()
        if scheme.lower() != "bearer" or not secret:
            raise ValueError("unsupported authorization")
        return jwt.decode(token, secret, algorithms=["HS256"])
    except (ValueError, JWTError):
        raise HTTPException(status_code=401, detail="Invalid or missing token")
