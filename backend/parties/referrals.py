"""
Referral program: codes and wallet bonuses.

REFEREE_SIGNUP credits the new user when they sign up with a code.
REFERRER_ORDER credits the referrer once the new user's first booking is confirmed.
Both are idempotent through the (referrer, referee, reward_type) unique constraint
and never raise into the caller.
"""
import logging
import random
import re
import string
from decimal import Decimal

from django.db import IntegrityError, transaction
from django.utils import timezone

from backend.core.utils import get_config_value
from .models import ReferralReward
from .wallets import credit_wallet, get_or_create_wallet

logger = logging.getLogger(__name__)

CONFIG_KEY_REFEREE_BONUS = 'REFERRAL_BONUS_REFEREE'
CONFIG_KEY_REFERRER_BONUS = 'REFERRAL_BONUS_REFERRER'

DEFAULT_REFEREE_BONUS = 50
DEFAULT_REFERRER_BONUS = 100


def generate_referral_code(name=None):
    """First three letters of the name (or DOC) plus five random characters"""
    prefix = re.sub(r'[^a-zA-Z]', '', name or '')[:3] or 'DOC'
    suffix = ''.join(random.choices(string.ascii_uppercase + string.digits, k=5))
    return f"{prefix.upper()}{suffix}"


def generate_unique_referral_code(name=None):
    from backend.core.models import User
    code = generate_referral_code(name)
    while User.objects.filter(referral_code=code).exists():
        code = generate_referral_code(name)
    return code


def _award(referrer, referee, reward_type, amount, beneficiary, trigger_event,
           trigger_entity_id, description, reference_id):
    with transaction.atomic():
        ReferralReward.objects.create(
            referrer=referrer,
            referee=referee,
            reward_type=reward_type,
            amount=amount,
            status='PROCESSED',
            trigger_event=trigger_event,
            trigger_entity_id=trigger_entity_id,
            processed_at=timezone.now(),
        )
        credit_wallet(
            get_or_create_wallet(beneficiary),
            amount,
            description=description,
            reference_type='REFERRAL',
            reference_id=reference_id,
        )


def award_signup_bonus(referrer, referee):
    """Credit the referee's wallet with the configured signup bonus"""
    amount = Decimal(str(get_config_value(CONFIG_KEY_REFEREE_BONUS, DEFAULT_REFEREE_BONUS)))
    if amount <= 0:
        return None

    if ReferralReward.objects.filter(referrer=referrer, referee=referee, reward_type='REFEREE_SIGNUP').exists():
        logger.info(f"Signup bonus already awarded for referee {referee.pk}")
        return None

    try:
        _award(
            referrer, referee, 'REFEREE_SIGNUP', amount,
            beneficiary=referee,
            trigger_event='SIGNUP',
            trigger_entity_id=None,
            description='Referral signup bonus - welcome reward',
            reference_id=str(referee.pk),
        )
    except IntegrityError:
        logger.info(f"Duplicate signup bonus prevented for referee {referee.pk}")
        return None
    except Exception as e:
        logger.error(f"Error awarding signup bonus to {referee.pk}: {str(e)}")
        return None

    logger.info(f"Signup bonus {amount} credited to referee {referee.pk}")
    return amount


def try_award_first_order_bonus(user, booking):
    """Credit the referrer once the referred user's first booking is confirmed"""
    try:
        referrer = user.referred_by
        if referrer is None:
            return None

        if ReferralReward.objects.filter(referrer=referrer, referee=user, reward_type='REFERRER_ORDER').exists():
            return None

        amount = Decimal(str(get_config_value(CONFIG_KEY_REFERRER_BONUS, DEFAULT_REFERRER_BONUS)))
        if amount <= 0:
            return None

        _award(
            referrer, user, 'REFERRER_ORDER', amount,
            beneficiary=referrer,
            trigger_event='FIRST_ORDER_COMPLETE',
            trigger_entity_id=str(booking.pk),
            description="Referral reward - friend's first order completed",
            reference_id=str(booking.pk),
        )
    except IntegrityError:
        logger.info(f"Duplicate first-order bonus prevented for user {user.pk}")
        return None
    except Exception as e:
        logger.error(f"Error awarding first-order bonus for user {user.pk}: {str(e)}")
        return None

    logger.info(f"First-order bonus {amount} credited to referrer {referrer.pk} (booking {booking.pk})")
    return amount
