from getpass import getpass

from coffeeshop.database import Base, SessionLocal, engine
from coffeeshop.models import RoleEnum, User
from coffeeshop.security import hash_password



def create_superuser():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()

    try:
        email = input("Email: ").strip()
        full_name = input("Full name: ").strip()
        password = getpass("Password: ")

        user = db.query(User).filter(User.email == email).first()
        if user:
            # Promote an existing account instead of duplicating it
            user.role = RoleEnum.ADMIN
        else:
            user = User(
                email=email,
                full_name=full_name or email,
                hashed_password=hash_password(password),
                role=RoleEnum.ADMIN,
            )
            db.add(user)

        db.commit()
        db.refresh(user)
    finally:
        db.close()

    print(f"Admin {email} created successfully")

if __name__ == "__main__":
    create_superuser()
