# db_init.py
import argparse
import secrets
from pathlib import Path

from config import Config
from models import Base, User, ensure_sqlite_dir, make_engine, make_session_factory


def main():
    parser = argparse.ArgumentParser(description="Create tables and optionally a user with an API token.")
    parser.add_argument("--create-user", type=str, default="", help="Username to create (prints its API token).")
    parser.add_argument("--business-name", type=str, default="", help="Seller business name for the new user.")
    parser.add_argument("--ntncnic", type=str, default="", help="Seller NTN/CNIC for the new user.")
    args = parser.parse_args()

    # Ensure the SQLite folder exists for local dev
    ensure_sqlite_dir(Config.SQLALCHEMY_DATABASE_URI)

    # Ensure exports/ exists for PDFs
    Path(Config.EXPORTS_DIR).mkdir(parents=True, exist_ok=True)

    engine = make_engine(Config.SQLALCHEMY_DATABASE_URI, echo=Config.SQLALCHEMY_ECHO)
    Base.metadata.create_all(engine)

    print("✅ Database initialized.")
    print(f"DB: {Config.SQLALCHEMY_DATABASE_URI}")
    print(f"Exports dir: {Config.EXPORTS_DIR}")

    username = (args.create_user or "").strip()
    if not username:
        return

    SessionLocal = make_session_factory(engine)
    with SessionLocal() as s:
        if s.query(User).filter(User.username == username).first():
            raise SystemExit(f"User already exists: {username}")
        token = secrets.token_urlsafe(32)
        s.add(User(
            username=username,
            api_token=token,
            business_name=args.business_name.strip(),
            ntncnic=args.ntncnic.strip(),
        ))
        s.commit()

    print(f"User created: {username}")
    print(f"API token:    {token}")

if __name__ == "__main__":
    main()
