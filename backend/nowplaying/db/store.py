"""Credential store - the only writer of users and handshake session rows

Every operation is one statement followed by a commit. Provider tokens are
encrypted with the configured TokenCipher before they are written and
decrypted on the way out; decryption problems never surface as store errors
(see utils.encryption for the legacy plaintext fallback). Database faults are
rolled back, logged and re-raised as StoreError.
"""
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from nowplaying.core.config import settings
from nowplaying.core.errors import StoreError, UserNotFoundError
from nowplaying.models.handshake_session import MiAuthSession, TwitterPKCESession
from nowplaying.models.user import User
from nowplaying.schemas.user import MiAuthSessionRecord, TwitterPKCESessionRecord, UserRecord
from nowplaying.utils.encryption import TokenCipher, decrypt_token, encrypt_token

logger = logging.getLogger(__name__)

ENCRYPTED_USER_FIELDS = (
    "spotify_access_token",
    "spotify_refresh_token",
    "misskey_access_token",
    "twitter_access_token",
    "twitter_refresh_token",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialStore:
    """Persistence for users and OAuth handshake sessions"""

    def __init__(self, db: Session, cipher: Optional[TokenCipher] = None, session_ttl: Optional[timedelta] = None):
        self.db = db
        self.cipher = cipher
        self.session_ttl = session_ttl or timedelta(minutes=settings.HANDSHAKE_SESSION_TTL_MINUTES)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _guard(self, action: str, commit: bool = False):
        try:
            yield
            if commit:
                self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Store operation failed - Action: {action}, Error: {type(e).__name__}: {e}")
            raise StoreError(f"failed to {action}", details={"original_error": str(e)}) from e

    def _encrypt(self, token: Optional[str]) -> Optional[str]:
        if token is None:
            return None
        return encrypt_token(token, self.cipher)

    def _to_record(self, user: User) -> UserRecord:
        record = UserRecord.model_validate(user)
        decrypted = {
            field: decrypt_token(getattr(user, field), self.cipher)
            for field in ENCRYPTED_USER_FIELDS
            if getattr(user, field)
        }
        return record.model_copy(update=decrypted)

    def _insert(self):
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return pg_insert(User)
        if dialect == "sqlite":
            return sqlite_insert(User)
        raise StoreError(f"upsert not supported for dialect {dialect}")

    def _update_user(self, user_id: uuid.UUID, action: str, **values) -> None:
        values["updated_at"] = _utcnow()
        with self._guard(action, commit=True):
            result = self.db.execute(
                update(User).where(User.id == user_id).values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise UserNotFoundError(details={"user_id": str(user_id)})

    # ------------------------------------------------------------------
    # users
    # ------------------------------------------------------------------

    def create_or_update_user(
        self,
        spotify_user_id: str,
        access_token: str,
        refresh_token: str,
        expires_at: datetime
    ) -> UserRecord:
        """Insert a user, or refresh the Spotify tokens of an existing one"""
        now = _utcnow()
        enc_access = self._encrypt(access_token)
        enc_refresh = self._encrypt(refresh_token)

        stmt = self._insert().values(
            id=uuid.uuid4(),
            spotify_user_id=spotify_user_id,
            spotify_access_token=enc_access,
            spotify_refresh_token=enc_refresh,
            spotify_token_expires_at=expires_at,
            api_url_token=uuid.uuid4(),
            api_header_token_enabled=False,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[User.spotify_user_id],
            set_={
                "spotify_access_token": stmt.excluded.spotify_access_token,
                "spotify_refresh_token": stmt.excluded.spotify_refresh_token,
                "spotify_token_expires_at": stmt.excluded.spotify_token_expires_at,
                "updated_at": now,
            },
        )

        with self._guard("upsert user", commit=True):
            self.db.execute(stmt)

        user = self.get_user_by_spotify_id(spotify_user_id)
        if user is None:
            raise StoreError("user missing after upsert", details={"spotify_user_id": spotify_user_id})
        logger.info(f"Upserted user for Spotify account {spotify_user_id}")
        return user

    def get_user_by_id(self, user_id: uuid.UUID) -> Optional[UserRecord]:
        with self._guard("get user by id"):
            user = self.db.execute(select(User).where(User.id == user_id)).scalar_one_or_none()
        return self._to_record(user) if user else None

    def get_user_by_spotify_id(self, spotify_user_id: str) -> Optional[UserRecord]:
        with self._guard("get user by spotify id"):
            user = self.db.execute(
                select(User).where(User.spotify_user_id == spotify_user_id)
            ).scalar_one_or_none()
        return self._to_record(user) if user else None

    def get_user_by_api_token(self, api_url_token: uuid.UUID) -> Optional[UserRecord]:
        with self._guard("get user by api token"):
            user = self.db.execute(
                select(User).where(User.api_url_token == api_url_token)
            ).scalar_one_or_none()
        return self._to_record(user) if user else None

    def update_spotify_token(self, user_id: uuid.UUID, access_token: str, refresh_token: str, expires_at: datetime) -> None:
        self._update_user(
            user_id, "update spotify token",
            spotify_access_token=self._encrypt(access_token),
            spotify_refresh_token=self._encrypt(refresh_token),
            spotify_token_expires_at=expires_at,
        )

    def update_misskey_token(
        self,
        user_id: uuid.UUID,
        instance_url: str,
        access_token: str,
        misskey_user_id: str,
        username: str,
        avatar_url: Optional[str],
        host: str
    ) -> None:
        self._update_user(
            user_id, "update misskey token",
            misskey_instance_url=instance_url,
            misskey_access_token=self._encrypt(access_token),
            misskey_user_id=misskey_user_id,
            misskey_username=username,
            misskey_avatar_url=avatar_url,
            misskey_host=host,
        )

    def update_twitter_token(
        self,
        user_id: uuid.UUID,
        access_token: str,
        refresh_token: Optional[str],
        expires_at: Optional[datetime],
        twitter_user_id: Optional[str],
        username: Optional[str],
        avatar_url: Optional[str]
    ) -> None:
        self._update_user(
            user_id, "update twitter token",
            twitter_access_token=self._encrypt(access_token),
            twitter_refresh_token=self._encrypt(refresh_token),
            twitter_token_expires_at=expires_at,
            twitter_user_id=twitter_user_id,
            twitter_username=username,
            twitter_avatar_url=avatar_url,
        )

    def regenerate_api_url_token(self, user_id: uuid.UUID) -> uuid.UUID:
        """Replace the capability token; the old one stops working immediately"""
        new_token = uuid.uuid4()
        self._update_user(user_id, "regenerate api url token", api_url_token=new_token)
        return new_token

    def set_api_header_token(self, user_id: uuid.UUID, token_hash: str) -> None:
        self._update_user(
            user_id, "set api header token",
            api_header_token_hash=token_hash,
            api_header_token_enabled=True,
        )

    def disable_api_header_token(self, user_id: uuid.UUID) -> None:
        self._update_user(
            user_id, "disable api header token",
            api_header_token_hash=None,
            api_header_token_enabled=False,
        )

    def disconnect_misskey(self, user_id: uuid.UUID) -> None:
        self._update_user(
            user_id, "disconnect misskey",
            misskey_instance_url=None,
            misskey_access_token=None,
        )

    def disconnect_twitter(self, user_id: uuid.UUID) -> None:
        self._update_user(
            user_id, "disconnect twitter",
            twitter_access_token=None,
            twitter_refresh_token=None,
            twitter_token_expires_at=None,
        )

    # ------------------------------------------------------------------
    # MiAuth sessions
    # ------------------------------------------------------------------

    def create_miauth_session(self, user_id: uuid.UUID, session_id: uuid.UUID, instance_url: str) -> MiAuthSessionRecord:
        now = _utcnow()
        row = MiAuthSession(
            user_id=user_id,
            session_id=session_id,
            instance_url=instance_url,
            created_at=now,
            expires_at=now + self.session_ttl,
        )
        with self._guard("create miauth session", commit=True):
            self.db.add(row)
        return MiAuthSessionRecord.model_validate(row)

    def get_miauth_session(self, session_id: uuid.UUID) -> Optional[MiAuthSessionRecord]:
        """Return the session only while it has not expired"""
        with self._guard("get miauth session"):
            row = self.db.execute(
                select(MiAuthSession).where(
                    MiAuthSession.session_id == session_id,
                    MiAuthSession.expires_at > _utcnow(),
                )
            ).scalar_one_or_none()
        return MiAuthSessionRecord.model_validate(row) if row else None

    def delete_miauth_session(self, session_id: uuid.UUID) -> None:
        with self._guard("delete miauth session", commit=True):
            self.db.execute(
                delete(MiAuthSession).where(MiAuthSession.session_id == session_id)
                .execution_options(synchronize_session=False)
            )

    # ------------------------------------------------------------------
    # Twitter PKCE sessions
    # ------------------------------------------------------------------

    def create_twitter_pkce_session(self, user_id: uuid.UUID, state: str, code_verifier: str) -> TwitterPKCESessionRecord:
        now = _utcnow()
        row = TwitterPKCESession(
            user_id=user_id,
            state=state,
            code_verifier=code_verifier,
            created_at=now,
            expires_at=now + self.session_ttl,
        )
        with self._guard("create twitter pkce session", commit=True):
            self.db.add(row)
        return TwitterPKCESessionRecord.model_validate(row)

    def get_twitter_pkce_session(self, state: str) -> Optional[TwitterPKCESessionRecord]:
        """Return the session only while it has not expired"""
        with self._guard("get twitter pkce session"):
            row = self.db.execute(
                select(TwitterPKCESession).where(
                    TwitterPKCESession.state == state,
                    TwitterPKCESession.expires_at > _utcnow(),
                )
            ).scalar_one_or_none()
        return TwitterPKCESessionRecord.model_validate(row) if row else None

    def delete_twitter_pkce_session(self, state: str) -> None:
        with self._guard("delete twitter pkce session", commit=True):
            self.db.execute(
                delete(TwitterPKCESession).where(TwitterPKCESession.state == state)
                .execution_options(synchronize_session=False)
            )

    # ------------------------------------------------------------------
    # sweep
    # ------------------------------------------------------------------

    def cleanup_expired_sessions(self) -> Dict[str, int]:
        """Delete every handshake session past its expiry, consumed or not"""
        now = _utcnow()
        with self._guard("cleanup expired sessions", commit=True):
            miauth = self.db.execute(
                delete(MiAuthSession).where(MiAuthSession.expires_at < now)
                .execution_options(synchronize_session=False)
            )
            pkce = self.db.execute(
                delete(TwitterPKCESession).where(TwitterPKCESession.expires_at < now)
                .execution_options(synchronize_session=False)
            )
        return {"miauth": miauth.rowcount or 0, "twitter_pkce": pkce.rowcount or 0}
