import logging
from datetime import datetime, timezone
from typing import Optional

import requests
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from rakhimart.config import settings
from rakhimart.exceptions import AccountProvisioningError, is_retryable_status
from rakhimart.models.profile import Profile

logger = logging.getLogger(__name__)


class AccountProvisioner:
    """Creates customer accounts through the auth provider's admin API."""

    def __init__(self, base_url: str, service_key: str, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.service_key = service_key
        self.timeout = timeout

    def create_account(
        self,
        email: str,
        password: str,
        first_name: str = "",
        last_name: str = "",
        phone: Optional[str] = None,
    ) -> str:
        """Returns the new user's id."""
        if not self.base_url or not self.service_key:
            raise AccountProvisioningError(
                "Auth provider not configured", retryable=False, provider="supabase"
            )

        try:
            response = requests.post(
                f"{self.base_url}/auth/v1/admin/users",
                json={
                    "email": email,
                    "password": password,
                    "email_confirm": True,
                    "user_metadata": {
                        "first_name": first_name,
                        "last_name": last_name,
                        "phone": phone,
                    },
                },
                headers={
                    "Authorization": f"Bearer {self.service_key}",
                    "apikey": self.service_key,
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
            )
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise AccountProvisioningError(
                f"Auth provider unreachable: {exc}", retryable=True, provider="supabase"
            ) from exc
        except requests.RequestException as exc:
            # bad SUPABASE_URL and the like; retrying will not help
            raise AccountProvisioningError(
                f"Auth provider request failed: {exc}", retryable=False, provider="supabase"
            ) from exc

        if response.status_code >= 400:
            raise AccountProvisioningError(
                f"Account creation failed ({response.status_code}): {response.text}",
                retryable=is_retryable_status(response.status_code),
                provider="supabase",
                status_code=response.status_code,
            )

        try:
            user_id = response.json().get("id")
        except (ValueError, AttributeError) as exc:
            raise AccountProvisioningError(
                f"Auth provider returned an unreadable body ({response.status_code})",
                retryable=False,
                provider="supabase",
            ) from exc

        if not user_id:
            raise AccountProvisioningError(
                "Auth provider response has no user id", retryable=False, provider="supabase"
            )

        logger.info(f"Provisioned account {user_id} for {email}")
        return user_id


def build_account_provisioner(config=settings) -> AccountProvisioner:
    return AccountProvisioner(
        config.SUPABASE_URL,
        config.SUPABASE_SERVICE_ROLE_KEY,
        timeout=config.HTTP_TIMEOUT_SECONDS,
    )


def upsert_profile(
    session: Session,
    user_id: str,
    *,
    first_name: str,
    last_name: str,
    email: str,
    phone: Optional[str],
) -> Optional[Profile]:
    """Best-effort; a failed profile write never blocks checkout."""
    try:
        profile = session.get(Profile, user_id)

        if not profile:
            profile = Profile(id=user_id, first_name=first_name, email=email)

        profile.first_name = first_name
        profile.last_name = last_name
        profile.email = email
        profile.phone = phone
        profile.updated_at = datetime.now(timezone.utc)

        session.add(profile)
        session.commit()
        session.refresh(profile)
        return profile

    except SQLAlchemyError as exc:
        session.rollback()
        logger.warning(f"Profile update failed for {user_id}: {exc}")
        return None
