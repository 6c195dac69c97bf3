#!/usr/bin/env python3
"""
Account Seed Script
Creates a primary account, optionally with one collaborator, for local development.

Usage:
    python -m scripts.seed_account <email> <password> [role] [--premium]
    python -m scripts.seed_account <email> <password> [role] [--premium] \
        --collaborator <collab_email> <collab_password> <manager|viewer>

Example:
    python -m scripts.seed_account owner@hotel.com securepassword123 admin --premium
"""
import sys
from uuid import uuid4

from sqlalchemy.orm import Session
from disruption_hub.database import SessionLocal, init_db
from disruption_hub.models.db_models import (
    UserDB, CollaboratorDB, Role, AccountStatus, CollaboratorStatus, COLLABORATOR_ROLES,
)
from disruption_hub.services.auth import hash_password


def create_account(email: str, password: str, role: Role, is_premium: bool, collaborator=None) -> bool:
    """Create a primary account (and collaborator) in the database."""
    # Ensure tables exist
    init_db()

    db: Session = SessionLocal()
    try:
        account = db.query(UserDB).filter(UserDB.email == email).first()
        if account:
            print(f"Account '{email}' already exists; updating role and premium flag.")
            account.role = role
            account.is_premium = is_premium
        else:
            account = UserDB(
                id=str(uuid4()),
                email=email,
                password_hash=hash_password(password),
                role=role,
                status=AccountStatus.ACTIVE,
                is_premium=is_premium,
                followed_alerts=[],
            )
            db.add(account)
            db.flush()

        if collaborator:
            collab_email, collab_password, collab_role = collaborator
            db.add(CollaboratorDB(
                id=str(uuid4()),
                user_id=account.id,
                email=collab_email,
                name=collab_email.split("@")[0],
                role=collab_role,
                status=CollaboratorStatus.ACTIVE,
                password_hash=hash_password(collab_password),
            ))

        db.commit()

        print("Account ready!")
        print(f"  Email: {email}")
        print(f"  Role: {role.value}")
        print(f"  Premium: {is_premium}")
        if collaborator:
            print(f"  Collaborator: {collaborator[0]} ({collaborator[2].value})")
        return True

    except Exception as e:
        print(f"Error creating account: {e}")
        db.rollback()
        return False
    finally:
        db.close()


def main():
    args = sys.argv[1:]
    collaborator = None
    if "--collaborator" in args:
        idx = args.index("--collaborator")
        collab_args = args[idx + 1:idx + 4]
        args = args[:idx] + args[idx + 4:]
        if len(collab_args) != 3:
            print(__doc__)
            sys.exit(1)
        try:
            collab_role = Role(collab_args[2])
        except ValueError:
            collab_role = None
        if collab_role not in COLLABORATOR_ROLES:
            print("Error: Collaborator role must be 'manager' or 'viewer'.")
            sys.exit(1)
        collaborator = (collab_args[0], collab_args[1], collab_role)

    is_premium = "--premium" in args
    args = [a for a in args if a != "--premium"]

    if len(args) not in (2, 3):
        print(__doc__)
        sys.exit(1)

    email, password = args[0], args[1]
    try:
        role = Role(args[2]) if len(args) == 3 else Role.USER
    except ValueError:
        print(f"Error: Role must be one of: {', '.join(r.value for r in Role)}")
        sys.exit(1)

    # Basic validation
    if len(password) < 8:
        print("Error: Password must be at least 8 characters.")
        sys.exit(1)

    if "@" not in email:
        print("Error: Invalid email format.")
        sys.exit(1)

    success = create_account(email, password, role, is_premium, collaborator)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
