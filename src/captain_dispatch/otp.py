"""Pickup OTP generation and verification with attempt limiting."""

import hmac
import logging
import secrets

from pydantic import BaseModel
from sqlalchemy.orm import Session

from .core.exceptions import InvalidLength, LockedOut, NotFoundError
from .db.repositories.ride_repository import RideRepository

logger = logging.getLogger(__name__)

OTP_LENGTH = 4
MAX_OTP_ATTEMPTS = 3


def generate_otp() -> str:
    """Uniform 4-digit code in 1000-9999."""
    return str(secrets.randbelow(9000) + 1000)


class OtpResult(BaseModel):
    verified: bool
    attempts_remaining: int


class OtpVerifier:
    """Checks a rider-supplied code against the ride's stored OTP.

    Mismatches are persisted; once MAX_OTP_ATTEMPTS are used, every call
    fails with LockedOut until support calls reset().
    """

    def __init__(self, session: Session, max_attempts: int = MAX_OTP_ATTEMPTS):
        self.rides = RideRepository(session)
        self.max_attempts = max_attempts

    def verify(self, ride_id: str, code: str) -> OtpResult:
        ride = self.rides.get(ride_id)
        if ride is None:
            raise NotFoundError(f"Ride {ride_id} not found", {"ride_id": ride_id})
        # Lockout wins over every other outcome, malformed codes included
        if ride.otp_attempts >= self.max_attempts:
            raise LockedOut(
                "Too many incorrect OTP attempts, contact support",
                {"ride_id": ride_id, "attempts": ride.otp_attempts},
            )

        code = (code or "").strip()
        if len(code) != OTP_LENGTH or not code.isdigit():
            raise InvalidLength(
                f"OTP must be exactly {OTP_LENGTH} digits", {"ride_id": ride_id}
            )

        if hmac.compare_digest(code, ride.otp):
            return OtpResult(
                verified=True, attempts_remaining=self.max_attempts - ride.otp_attempts
            )

        if not self.rides.record_otp_mismatch(ride_id, self.max_attempts):
            raise LockedOut(
                "Too many incorrect OTP attempts, contact support", {"ride_id": ride_id}
            )
        remaining = self.max_attempts - (ride.otp_attempts + 1)
        logger.info(f"OTP mismatch for ride {ride_id}, {remaining} attempts left")
        return OtpResult(verified=False, attempts_remaining=max(remaining, 0))

    def reset(self, ride_id: str, regenerate: bool = False) -> str | None:
        """Unlock verification. Optionally issue a fresh code, which is returned."""
        if self.rides.get(ride_id) is None:
            raise NotFoundError(f"Ride {ride_id} not found", {"ride_id": ride_id})
        otp = generate_otp() if regenerate else None
        self.rides.reset_otp(ride_id, otp)
        logger.info(f"OTP attempts reset for ride {ride_id}")
        return otp
