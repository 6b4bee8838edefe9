"""
Two-factor authentication application.

Provides:
- Authenticator (TOTP) enrollment with encrypted secrets and backup codes
- One-time codes delivered by email or SMS
- Step-up enforcement when a user is elevated into a privileged role
"""
