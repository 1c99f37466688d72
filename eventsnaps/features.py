"""
Plan features, trial activation and branding.

A user's effective features come from, in order: their most recent
active/trialing subscription, the legacy ``plan_id`` on their profile, and
finally ``DEFAULT_FEATURES``.
"""

import logging
from datetime import timedelta
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import selectinload

from .database import DatabaseManager, to_record
from .exceptions import FeatureNotAvailableError
from .models import Plan, SubscriptionStatus, UserProfile, UserSubscription, as_utc, utcnow
from .schemas import (
    BrandingConfig, FeatureCheckResult, PlanFeatures, PlanRecord, SubscriptionRecord,
    TrialActivationResult, UserProfileRecord
)

logger = logging.getLogger(__name__)

DEFAULT_FEATURES = PlanFeatures()

TRIAL_PLAN_ID = "trial_pro"
TRIAL_DURATION = timedelta(hours=24)

UPGRADE_MESSAGE = "Upgrade your plan to use this feature"
VERIFY_FAILED_MESSAGE = "Could not verify your plan. Please try again."
ALREADY_SUBSCRIBED_MESSAGE = "You already have or already had a subscription."


class FeatureGate:
    """Resolves plan capabilities for users and event owners"""

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager

    async def get_active_subscription(self, user_id: str) -> Optional[SubscriptionRecord]:
        async with self.db_manager.get_session() as session:
            result = await session.execute(
                sa.select(UserSubscription)
                .where(
                    UserSubscription.user_id == user_id,
                    UserSubscription.status.in_([SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING]),
                )
                .order_by(UserSubscription.created_at.desc())
                .limit(1)
            )
            row = result.scalars().first()
            return to_record(SubscriptionRecord, row) if row is not None else None

    async def get_plan(self, plan_id: str) -> Optional[PlanRecord]:
        async with self.db_manager.get_session() as session:
            row = await session.get(Plan, plan_id)
            return to_record(PlanRecord, row) if row is not None else None

    async def get_profile(self, user_id: str) -> Optional[UserProfileRecord]:
        async with self.db_manager.get_session() as session:
            row = await session.get(UserProfile, user_id)
            return to_record(UserProfileRecord, row) if row is not None else None

    async def resolve_user_features(self, user_id: str) -> PlanFeatures:
        """Effective features; persistence and shape errors propagate"""
        async with self.db_manager.get_session() as session:
            result = await session.execute(
                sa.select(UserSubscription)
                .options(selectinload(UserSubscription.plan))
                .where(
                    UserSubscription.user_id == user_id,
                    UserSubscription.status.in_([SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING]),
                )
                .order_by(UserSubscription.created_at.desc())
                .limit(1)
            )
            subscription = result.scalars().first()
            # A plan without a feature set does not count; fall through to the profile
            if subscription is not None and subscription.plan is not None and subscription.plan.features:
                return to_record(PlanRecord, subscription.plan).features

            profile = await session.get(UserProfile, user_id)
            if profile is not None and profile.plan_id:
                plan = await session.get(Plan, profile.plan_id)
                if plan is not None:
                    return to_record(PlanRecord, plan).features

        return DEFAULT_FEATURES.model_copy()

    async def check_feature(self, user_id: str, feature: str) -> FeatureCheckResult:
        """Gate on one feature. Any failure denies access."""
        try:
            features = await self.resolve_user_features(user_id)
            if feature not in PlanFeatures.model_fields:
                raise KeyError(feature)
            value = getattr(features, feature)
        except Exception as e:
            logger.error(f"Feature check failed for {user_id}: {e}", extra={"feature": feature})
            return FeatureCheckResult(allowed=False, message=VERIFY_FAILED_MESSAGE)

        if isinstance(value, bool):
            if value:
                return FeatureCheckResult(allowed=True)
            return FeatureCheckResult(allowed=False, message=UPGRADE_MESSAGE)
        # Numeric limits are enforced by the caller
        return FeatureCheckResult(allowed=True)

    async def require_feature(self, user_id: str, feature: str) -> None:
        """Raise FeatureNotAvailableError when the check denies access"""
        result = await self.check_feature(user_id, feature)
        if not result.allowed:
            raise FeatureNotAvailableError(feature, result.message)

    async def activate_trial(self, user_id: str) -> TrialActivationResult:
        """Start a 24h trial for users who never had any subscription"""
        try:
            async with self.db_manager.get_session() as session:
                result = await session.execute(
                    sa.select(UserSubscription.id).where(UserSubscription.user_id == user_id).limit(1)
                )
                if result.first() is not None:
                    return TrialActivationResult(activated=False, message=ALREADY_SUBSCRIBED_MESSAGE)

                session.add(UserSubscription(
                    user_id=user_id,
                    plan_id=TRIAL_PLAN_ID,
                    status=SubscriptionStatus.TRIALING,
                    current_period_end=utcnow() + TRIAL_DURATION,
                ))
        except Exception as e:
            logger.error(f"Trial activation failed for {user_id}: {e}")
            return TrialActivationResult(activated=False, message=str(e) or "Error activating trial.")

        logger.info("Trial activated", extra={"user_id": user_id, "plan_id": TRIAL_PLAN_ID})
        return TrialActivationResult(activated=True)

    async def is_trial_expired(self, user_id: str) -> bool:
        async with self.db_manager.get_session() as session:
            result = await session.execute(
                sa.select(UserSubscription.current_period_end)
                .where(
                    UserSubscription.user_id == user_id,
                    UserSubscription.status == SubscriptionStatus.TRIALING,
                )
                .limit(1)
            )
            period_end = result.scalar()
        if period_end is None:
            return False
        return as_utc(period_end) < utcnow()

    async def get_branding_config(self, creator_id: str) -> BrandingConfig:
        """White-label branding when the creator's plan allows it"""
        try:
            features = await self.resolve_user_features(creator_id)
            if not features.white_label:
                return BrandingConfig()
            profile = await self.get_profile(creator_id)
        except Exception as e:
            logger.warning(f"Branding lookup failed for {creator_id}: {e}")
            return BrandingConfig()

        return BrandingConfig(
            show_dj_logo=True,
            logo_url=profile.custom_logo_url if profile else None,
            dj_name=profile.full_name if profile else None,
        )
