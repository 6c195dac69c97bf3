"""
Token Authority

Issues, resolves and revokes bearer tokens (JWT, python-jose).

A token only asserts *who* the caller is. Role, premium flag and status are
always re-read from the live account on resolve, so a downgrade or a
collaborator removal takes effect on the very next request.

Failure semantics:
- resolve() returns None for every credential problem (bad signature,
  expired, revoked, wrong type, unknown or inactive account, missing or
  inactive collaborator). The cause is logged, never returned.
- Storage errors during resolve propagate as DependencyFailure.
"""
import logging
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple
from uuid import uuid4

from jose import JWTError, jwt
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ... import config
from ...models.db_models import (
    UserDB, CollaboratorDB, RevokedTokenDB, AccountStatus, CollaboratorStatus,
)
from ..action_hub.errors import AuthenticationFailure, DependencyFailure
from ..directories import AccountDirectory
from .credentials import verify_password
from .identity import Identity

logger = logging.getLogger(__name__)

ACCESS = "access"
REFRESH = "refresh"


class TokenAuthority:
    """Signs and verifies tokens against live account state."""

    def __init__(
        self,
        db: Session,
        secret_key: str = config.SECRET_KEY,
        algorithm: str = config.ALGORITHM,
        issuer: str = config.TOKEN_ISSUER,
        audience: str = config.TOKEN_AUDIENCE,
    ):
        self.db = db
        self.accounts = AccountDirectory(db)
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.issuer = issuer
        self.audience = audience

    # =========================================================================
    # ISSUE
    # =========================================================================

    def issue(
        self,
        account: UserDB,
        collaborator: Optional[CollaboratorDB] = None,
        ttl: Optional[timedelta] = None,
        token_type: str = ACCESS,
        now: Optional[datetime] = None,
    ) -> str:
        """Sign a token for the account, optionally acting as one of its collaborators."""
        now = now or datetime.utcnow()
        if ttl is None:
            ttl = (
                timedelta(hours=config.ACCESS_TOKEN_EXPIRE_HOURS)
                if token_type == ACCESS
                else timedelta(days=config.REFRESH_TOKEN_EXPIRE_DAYS)
            )

        claims = {
            "sub": account.id,
            "jti": str(uuid4()),
            "iat": now,
            "exp": now + ttl,
            "iss": self.issuer,
            "aud": self.audience,
            "type": token_type,
        }
        if collaborator is not None:
            role = collaborator.role.value if hasattr(collaborator.role, "value") else collaborator.role
            claims["collab"] = {"email": collaborator.email, "role": role}

        return jwt.encode(claims, self.secret_key, algorithm=self.algorithm)

    def issue_pair(
        self,
        account: UserDB,
        collaborator: Optional[CollaboratorDB] = None,
    ) -> Dict[str, object]:
        """Access + refresh token pair."""
        return {
            "access_token": self.issue(account, collaborator, token_type=ACCESS),
            "refresh_token": self.issue(account, collaborator, token_type=REFRESH),
            "token_type": "bearer",
            "expires_in": config.ACCESS_TOKEN_EXPIRE_HOURS * 3600,
        }

    # =========================================================================
    # RESOLVE
    # =========================================================================

    def _decode(self, raw: str, verify_exp: bool = True) -> Optional[dict]:
        try:
            return jwt.decode(
                raw,
                self.secret_key,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options={"verify_exp": verify_exp},
            )
        except JWTError as e:
            logger.warning(f"Token rejected: {e}")
            return None

    def is_revoked(self, jti: str) -> bool:
        try:
            return self.db.get(RevokedTokenDB, jti) is not None
        except SQLAlchemyError as e:
            logger.error(f"Revocation lookup failed: {e}")
            raise DependencyFailure("Token store unavailable") from e

    def resolve(self, raw: Optional[str], expected_type: str = ACCESS) -> Optional[Identity]:
        """
        Resolve a raw bearer token into a fresh Identity.

        Returns None for any credential problem. Raises DependencyFailure only
        when the account or revocation store cannot be read.
        """
        resolved = self._resolve_records(raw, expected_type)
        if resolved is None:
            return None
        payload, account, collaborator = resolved

        return Identity(
            user_id=account.id,
            email=account.email,
            role=account.role,
            is_premium=bool(account.is_premium),
            status=account.status,
            token_id=payload["jti"],
            expires_at=datetime.utcfromtimestamp(payload["exp"]),
            collaborator_email=collaborator.email if collaborator else None,
            collaborator_role=collaborator.role if collaborator else None,
            collaborator_name=collaborator.name if collaborator else None,
        )

    def _resolve_records(
        self, raw: Optional[str], expected_type: str
    ) -> Optional[Tuple[dict, UserDB, Optional[CollaboratorDB]]]:
        if not raw:
            return None

        payload = self._decode(raw)
        if payload is None:
            return None

        if payload.get("type") != expected_type:
            logger.warning(f"Token rejected: expected {expected_type} token, got {payload.get('type')}")
            return None

        jti = payload.get("jti")
        user_id = payload.get("sub")
        if not jti or not user_id:
            logger.warning("Token rejected: missing jti or sub claim")
            return None

        if self.is_revoked(jti):
            logger.warning(f"Token rejected: {jti} has been revoked")
            return None

        account = self.accounts.find_by_id(user_id)
        if account is None:
            logger.warning(f"Token rejected: account {user_id} no longer exists")
            return None
        if account.status != AccountStatus.ACTIVE:
            logger.warning(f"Token rejected: account {user_id} is {account.status.value}")
            return None

        collaborator = None
        collab_claim = payload.get("collab")
        if collab_claim:
            email = collab_claim.get("email") if isinstance(collab_claim, dict) else None
            if not email:
                logger.warning("Token rejected: malformed collaborator claim")
                return None
            collaborator = self.accounts.find_collaborator(account.id, email)
            if collaborator is None:
                logger.warning(f"Token rejected: collaborator {email} removed from account {user_id}")
                return None
            if collaborator.status != CollaboratorStatus.ACTIVE:
                logger.warning(f"Token rejected: collaborator {email} is {collaborator.status.value}")
                return None

        return payload, account, collaborator

    # =========================================================================
    # REVOKE / REFRESH
    # =========================================================================

    def revoke(self, raw: str, now: Optional[datetime] = None) -> bool:
        """
        Revoke a token until its own expiry. Idempotent.

        Expired revocation rows are purged on the way so the table stays bounded.
        Returns False if the token is not one of ours.
        """
        now = now or datetime.utcnow()
        payload = self._decode(raw, verify_exp=False)
        if payload is None or not payload.get("jti"):
            return False

        jti = payload["jti"]
        expires_at = datetime.utcfromtimestamp(payload["exp"])

        try:
            self.db.query(RevokedTokenDB).filter(
                RevokedTokenDB.expires_at < now
            ).delete(synchronize_session=False)

            if expires_at > now and self.db.get(RevokedTokenDB, jti) is None:
                self.db.add(RevokedTokenDB(jti=jti, expires_at=expires_at))
            self.db.commit()
        except IntegrityError:
            # Concurrent revoke of the same token already inserted the row
            self.db.rollback()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to revoke token {jti}: {e}")
            raise DependencyFailure("Token store unavailable") from e

        logger.info(f"Token revoked: {jti}")
        return True

    def refresh(self, raw_refresh: str) -> Dict[str, object]:
        """Exchange a live refresh token for a new pair. The old refresh token is revoked."""
        resolved = self._resolve_records(raw_refresh, REFRESH)
        if resolved is None:
            raise AuthenticationFailure("Invalid or expired refresh token")
        _, account, collaborator = resolved

        self.revoke(raw_refresh)
        return self.issue_pair(account, collaborator)

    # =========================================================================
    # LOGIN
    # =========================================================================

    def authenticate_login(self, email: str, password: str) -> Dict[str, object]:
        """
        Verify credentials and issue a token pair.

        Collaborator credentials are checked first, then the primary account.
        Inactive accounts and collaborators are rejected like bad passwords.
        """
        for collaborator in self.accounts.find_by_collaborator_email(email):
            if not verify_password(password, collaborator.password_hash):
                continue
            parent = self.accounts.find_by_id(collaborator.user_id)
            if parent is None or parent.status != AccountStatus.ACTIVE:
                logger.warning(f"Collaborator login refused for {email}: parent account inactive")
                raise AuthenticationFailure("Invalid email or password")
            if collaborator.status != CollaboratorStatus.ACTIVE:
                logger.warning(f"Collaborator login refused for {email}: status {collaborator.status.value}")
                raise AuthenticationFailure("Invalid email or password")
            logger.info(f"Collaborator logged in: {email} (account {parent.id})")
            return self.issue_pair(parent, collaborator)

        account = self.accounts.find_by_email(email)
        if account is None or not verify_password(password, account.password_hash):
            raise AuthenticationFailure("Invalid email or password")
        if account.status != AccountStatus.ACTIVE:
            logger.warning(f"Login refused for {email}: account {account.status.value}")
            raise AuthenticationFailure("Invalid email or password")

        logger.info(f"User logged in: {email}")
        return self.issue_pair(account)
