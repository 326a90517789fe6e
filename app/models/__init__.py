# app/models/__init__.py
# Import all models here so SQLAlchemy registers them into Base.metadata.

from app.models.user import User  # noqa: F401
from app.models.plan import PricingPlan  # noqa: F401

from app.models.coupon import Coupon, CouponRedemption  # noqa: F401

from app.models.wallet import PayoutRequest, Wallet, WalletTransaction  # noqa: F401

from app.models.order import Order  # noqa: F401
from app.models.affiliate import AffiliateLink, AffiliateProgram, Commission  # noqa: F401
