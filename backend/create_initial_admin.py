# backend/create_initial_admin.py

from wmsdb.database import SessionLocal
from wmsdb.apps.catalog import models


def main() -> None:
    db = SessionLocal()
    try:
        username = "admin"

        # Check if it already exists
        existing = db.query(models.User).filter(models.User.username == username).first()
        if existing:
            print(f"[INFO] User already exists: id={existing.id}, username={existing.username}")
            return

        user = models.User(
            username=username,
            full_name="Warehouse Admin",
            role=models.UserRole.ADMIN,
            is_active=True,
        )

        db.add(user)
        db.commit()
        db.refresh(user)

        print("[OK] Created admin user:")
        print(f"  id:       {user.id}")
        print(f"  username: {user.username}")
        print(f"  role:     {user.role.value}")
        print(f"  send it as the X-Actor-Id header: {user.id}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
