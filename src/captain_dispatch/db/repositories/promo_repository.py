"""Promo code lookups and usage accounting."""

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from ...promo import PromoCode as PromoDomain
from ...promo import normalize_code
from ..schema import PromoCode


class PromoRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self, code: str) -> PromoDomain | None:
        row = self.session.get(PromoCode, normalize_code(code), populate_existing=True)
        if row is None:
            return None
        return PromoDomain(
            code=row.code,
            discount_type=row.discount_type,  # type: ignore[arg-type]
            discount_value=row.discount_value,
            max_discount=row.max_discount,
            min_ride_value=row.min_ride_value,
            usage_limit=row.usage_limit,
            used_count=row.used_count,
            valid_from=row.valid_from,
            valid_until=row.valid_until,
            is_active=row.is_active,
        )

    def save(self, promo: PromoDomain) -> None:
        code = normalize_code(promo.code)
        row = self.session.get(PromoCode, code)
        if row is None:
            row = PromoCode(code=code)
            self.session.add(row)
        for field, value in promo.model_dump(exclude={"code"}).items():
            setattr(row, field, value)
        self.session.flush()

    def redeem(self, code: str) -> bool:
        """Count one use of the code unless its usage limit has been reached."""
        stmt = (
            update(PromoCode)
            .where(
                PromoCode.code == normalize_code(code),
                or_(PromoCode.usage_limit.is_(None), PromoCode.used_count < PromoCode.usage_limit),
            )
            .values(used_count=PromoCode.used_count + 1)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1  # type: ignore[attr-defined]
