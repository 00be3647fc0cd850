from datetime import datetime, timedelta, timezone

import pytest

from services.common import trust_token
from services.common.trust_token import InvalidSignature, MalformedToken, TokenExpired


class TestTrustToken:
    def test_issued_token_verifies_as_system(self, settings):
        claims = trust_token.verify(trust_token.issue(settings), settings.jwt_secret_key)

        assert claims.user_id == trust_token.SYSTEM_USER_ID
        assert claims.email == trust_token.SYSTEM_EMAIL
        assert claims.roles == trust_token.SYSTEM_ROLE
        assert claims.subject == trust_token.INTERNAL_SUBJECT
        assert claims.issuer == settings.jwt_issuer

    def test_lifetime_follows_settings(self, settings):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        claims = trust_token.verify(trust_token.issue(settings, now=now), settings.jwt_secret_key, now=now)
        assert claims.expires_at - claims.issued_at == settings.jwt_duration_hours * 3600

    def test_expired_token_rejected(self, settings):
        issued = datetime(2026, 1, 1, tzinfo=timezone.utc)
        token = trust_token.issue(settings, now=issued)
        later = issued + timedelta(hours=settings.jwt_duration_hours, seconds=1)

        with pytest.raises(TokenExpired):
            trust_token.verify(token, settings.jwt_secret_key, now=later)

    def test_wrong_secret_rejected(self, settings):
        token = trust_token.issue(settings)
        with pytest.raises(InvalidSignature):
            trust_token.verify(token, "another-secret")

    @pytest.mark.parametrize("token", ["", "abc", "a.b", "a.b.c.d", "not.a.token"])
    def test_malformed_token_rejected(self, settings, token):
        with pytest.raises(MalformedToken):
            trust_token.verify(token, settings.jwt_secret_key)
