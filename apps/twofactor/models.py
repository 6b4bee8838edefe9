"""
Two-factor models.

- TwoFactorCredential: one per user; encrypted authenticator secret
- TwoFactorBackupCode: single-use recovery codes, each encrypted separately
- VerificationToken: short-lived email/SMS challenge, stored as a keyed hash
- StepUpFlag: marks a user elevated into a privileged role before enrollment
"""
from django.db import models

from apps.core.models import BaseModel, BaseModelManager


class TwoFactorMethod(models.TextChoices):
    AUTHENTICATOR = 'authenticator', 'Authenticator app'
    EMAIL = 'email', 'Email'
    SMS = 'sms', 'SMS'


class VerificationChannel(models.TextChoices):
    EMAIL = 'email', 'Email'
    SMS = 'sms', 'SMS'


class StepUpState(models.TextChoices):
    NORMAL = 'normal', 'Normal'
    PENDING_STEP_UP = 'pending_step_up', 'Pending step-up'


class TwoFactorCredentialManager(BaseModelManager):

    def for_user(self, user_id):
        return self.filter(user_id=user_id).first()

    def enabled(self):
        return self.filter(enabled=True)


class TwoFactorCredential(BaseModel):
    """
    Per-user two-factor configuration.

    Exactly one method is active at a time. The authenticator secret is
    stored encrypted (AES-256-GCM, fresh nonce per record) and bound to the
    owning user id as associated data.
    """

    user_id = models.CharField(max_length=64, unique=True)
    enabled = models.BooleanField(default=False)
    method = models.CharField(
        max_length=20,
        choices=TwoFactorMethod.choices,
        null=True,
        blank=True,
    )
    secret_ciphertext = models.TextField(
        blank=True,
        help_text="Encrypted base32 authenticator secret"
    )
    setup_at = models.DateTimeField(null=True, blank=True)

    objects = TwoFactorCredentialManager()

    class Meta:
        db_table = 'two_factor_credentials'

    def __str__(self):
        state = self.method if self.enabled else 'disabled'
        return f"{self.user_id} ({state})"


class TwoFactorBackupCode(BaseModel):
    """
    One single-use backup code.

    Consumption is a soft delete performed as one conditional UPDATE, so two
    concurrent submissions of the same code cannot both succeed.
    """

    credential = models.ForeignKey(
        TwoFactorCredential,
        on_delete=models.CASCADE,
        related_name='backup_codes',
    )
    position = models.PositiveSmallIntegerField()
    code_ciphertext = models.TextField()

    class Meta:
        db_table = 'two_factor_backup_codes'
        ordering = ['credential', 'position']


class VerificationTokenManager(BaseModelManager):

    def live(self, user_id, channel, now):
        """
        Unused, unexpired tokens for (user, channel), newest first.

        Newest means latest expiry, which follows the service clock;
        creation time only breaks ties.
        """
        return self.filter(
            user_id=user_id,
            channel=channel,
            used_at__isnull=True,
            expires_at__gt=now,
        ).order_by('-expires_at', '-created_at')

    def expired(self, now):
        return self.filter(expires_at__lte=now)


class VerificationToken(BaseModel):
    """
    Ephemeral email/SMS challenge.

    Only an HMAC of the code is stored. A token is consumed by its first
    correct match and is dead once attempts reach max_attempts or it
    expires. Expired rows are removed by the periodic sweep.
    """

    user_id = models.CharField(max_length=64, db_index=True)
    channel = models.CharField(max_length=10, choices=VerificationChannel.choices)
    code_hash = models.CharField(max_length=64)
    destination = models.CharField(
        max_length=255,
        blank=True,
        help_text="Masked email address or phone number"
    )
    expires_at = models.DateTimeField(db_index=True)
    attempts = models.PositiveSmallIntegerField(default=0)
    max_attempts = models.PositiveSmallIntegerField(default=3)
    used_at = models.DateTimeField(null=True, blank=True)

    objects = VerificationTokenManager()

    class Meta:
        db_table = 'verification_tokens'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['user_id', 'channel', 'used_at']),
        ]

    def __str__(self):
        return f"{self.channel} code for {self.user_id}"


class StepUpFlagManager(BaseModelManager):

    def pending(self):
        return self.filter(state=StepUpState.PENDING_STEP_UP)


class StepUpFlag(BaseModel):
    """
    Step-up state for one user.

    PENDING_STEP_UP records that a privileged role was granted before
    two-factor enrollment was complete; completing enrollment returns the
    user to NORMAL.
    """

    user_id = models.CharField(max_length=64, unique=True)
    state = models.CharField(
        max_length=20,
        choices=StepUpState.choices,
        default=StepUpState.NORMAL,
    )
    role_name = models.CharField(max_length=50, blank=True)
    tenant_id = models.CharField(max_length=64, blank=True)
    flagged_at = models.DateTimeField(null=True, blank=True)
    cleared_at = models.DateTimeField(null=True, blank=True)

    objects = StepUpFlagManager()

    class Meta:
        db_table = 'step_up_flags'

    def __str__(self):
        return f"{self.user_id}: {self.state}"
