"""Create (or reuse) an ADMIN user and print a bearer token for the API.

Credentials are owned by the external identity provider; this command only
provisions the local account and mints a token signed with JWT_SECRET.

Run: `python -m lease_ops.manage_create_admin --email admin@example.com`
"""

import argparse
from contextlib import contextmanager

from lease_ops.auth.jwt import create_access_token
from lease_ops.config import SessionLocal
from lease_ops.constants import DEFAULT_ROLES
from lease_ops.models.models import Role, User


@contextmanager
def session_scope():
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def ensure_roles(db):
    for name, description in DEFAULT_ROLES:
        role = db.query(Role).filter(Role.name == name).first()
        if not role:
            role = Role(name=name, description=description)
            db.add(role)
    db.flush()


def main():
    parser = argparse.ArgumentParser(description="Create an ADMIN user and print an access token")
    parser.add_argument("--email", required=True)
    parser.add_argument("--full-name", default="Administrateur")
    parser.add_argument("--expires-minutes", type=int, default=None)
    args = parser.parse_args()

    with session_scope() as db:
        ensure_roles(db)
        admin_role = db.query(Role).filter(Role.name == "ADMIN").one()

        user = db.query(User).filter(User.email == args.email).first()
        if user:
            print(f"Reusing existing user with id {user.id}")
        else:
            user = User(email=args.email, full_name=args.full_name, role_id=admin_role.id)
            user.roles.append(admin_role)
            db.add(user)
            db.flush()
            print(f"Created ADMIN user with id {user.id}")

        token = create_access_token({"sub": str(user.id)}, expires_minutes=args.expires_minutes)
    print(token)


if __name__ == "__main__":
    main()
