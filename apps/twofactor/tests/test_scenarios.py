"""
End-to-end flows across role assignment, resolution, and verification.
"""
import re

import pytest

from apps.core.exceptions import AuthorizationError
from apps.twofactor.services import VerificationService
from apps.twofactor.services.delivery import DeliveryResult
from apps.twofactor.services.verification_service import ATTEMPTS_EXHAUSTED


class CapturingEmail:

    def __init__(self):
        self.bodies = []

    def send(self, to, subject, body):
        self.bodies.append(body)
        return DeliveryResult(ok=True)


@pytest.fixture
def church_admin(assignment_service, tenant_id):
    assignment_service.assign_role('bootstrap', 'actor', tenant_id, 'church_admin')
    return 'actor'


@pytest.mark.django_db
class TestChurchAdminDelegation:

    def test_church_admin_appoints_pastor(self, step_up_service, assignment_service,
                                          permission_service, church_admin, enroll, tenant_id):
        enroll(church_admin)

        result = step_up_service.change_role(church_admin, 'u1', tenant_id, 'pastor')

        assert result.assignment.role.name == 'pastor'
        assert assignment_service.get_user_role('u1', tenant_id).role_name == 'pastor'
        assert permission_service.has_permission('u1', tenant_id, 'sermons.create')
        # Granted immediately; enrollment is still owed
        assert result.requires_2fa_setup is True

    def test_church_admin_cannot_appoint_church_admin(self, step_up_service, assignment_service,
                                                      church_admin, enroll, tenant_id):
        enroll(church_admin)

        assert not assignment_service.can_manage_role(church_admin, tenant_id, 'church_admin')
        with pytest.raises(AuthorizationError):
            step_up_service.change_role(church_admin, 'u2', tenant_id, 'church_admin')
        assert assignment_service.get_user_role('u2', tenant_id) is None


@pytest.mark.django_db
class TestExhaustedEmailCode:

    def test_correct_code_after_three_misses_rejected(self, clock):
        email = CapturingEmail()
        service = VerificationService(deliveries={'email': email}, clock=clock)

        assert service.send_code('u3', 'u3@example.org', 'email').sent
        code = re.search(r'\d{6}', email.bodies[-1]).group(0)
        wrong = f"{(int(code) + 1) % 1000000:06d}"

        for _ in range(3):
            assert not service.verify_code('u3', wrong, 'email').valid
        result = service.verify_code('u3', code, 'email')

        assert result.valid is False
        assert result.reason == ATTEMPTS_EXHAUSTED
