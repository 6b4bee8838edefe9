from apps.twofactor.services.delivery import DeliveryResult, EmailDelivery, TwilioSmsDelivery, get_delivery
from apps.twofactor.services.step_up_service import (
    PermissionChangeResult,
    RoleChangeResult,
    RoleUpgradeResult,
    RoleValidationResult,
    StepUpService,
)
from apps.twofactor.services.two_factor_service import TOTPSetup, TwoFactorService
from apps.twofactor.services.verification_service import SendResult, VerificationResult, VerificationService

__all__ = [
    'DeliveryResult',
    'EmailDelivery',
    'TwilioSmsDelivery',
    'get_delivery',
    'PermissionChangeResult',
    'RoleChangeResult',
    'RoleUpgradeResult',
    'RoleValidationResult',
    'StepUpService',
    'TOTPSetup',
    'TwoFactorService',
    'SendResult',
    'VerificationResult',
    'VerificationService',
]
