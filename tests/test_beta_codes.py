from datetime import timedelta

import pytest

from errors import (
    AlreadyUsedError,
    ExpiredError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from logic import beta_codes
from models.beta_code import BetaInvitationCode
from models.user import ROLE_ADMIN, ROLE_BETA_TESTER, ROLE_USER, User


class TestRedeem:

    def test_redeem_upgrades_user(self, db, now, make_user, make_beta_code):
        user = make_user("ana@example.org")
        make_beta_code("ABC123")

        invitation = beta_codes.redeem_code(db, "  abc123 ", "ana@example.org", now)

        assert invitation.is_used is True
        assert invitation.used_by == user.id
        db.refresh(user)
        assert user.role == ROLE_BETA_TESTER

    def test_admin_keeps_role_after_redeeming(self, db, now, make_user, make_beta_code):
        admin = make_user("admin@example.org", role=ROLE_ADMIN)
        make_beta_code("ABC123")

        invitation = beta_codes.redeem_code(db, "ABC123", "admin@example.org", now)

        assert invitation.used_by == admin.id
        db.refresh(admin)
        assert admin.role == ROLE_ADMIN
        codes, stats = beta_codes.list_codes(db, admin)
        assert stats["used"] == 1

    def test_second_redeem_is_rejected(self, db, now, make_user, make_beta_code):
        make_user("ana@example.org")
        make_beta_code("ABC123")
        beta_codes.redeem_code(db, "ABC123", "ana@example.org", now)

        with pytest.raises(AlreadyUsedError):
            beta_codes.redeem_code(db, "ABC123", "ana@example.org", now)

    def test_unknown_code(self, db, now, make_user):
        make_user("ana@example.org")
        with pytest.raises(NotFoundError):
            beta_codes.redeem_code(db, "MISSING", "ana@example.org", now)

    def test_unknown_user(self, db, now, make_beta_code):
        make_beta_code("ABC123")
        with pytest.raises(NotFoundError):
            beta_codes.redeem_code(db, "ABC123", "ghost@example.org", now)

    def test_expired_code(self, db, now, make_user, make_beta_code):
        user = make_user("ana@example.org")
        make_beta_code("OLD999", expires_at=now - timedelta(days=1))

        with pytest.raises(ExpiredError):
            beta_codes.redeem_code(db, "OLD999", "ana@example.org", now)
        db.refresh(user)
        assert user.role == ROLE_USER

    @pytest.mark.parametrize("code", ["", "   ", None, 42])
    def test_malformed_code(self, db, now, code):
        with pytest.raises(ValidationError):
            beta_codes.redeem_code(db, code, "ana@example.org", now)

    def test_concurrent_redemption_only_one_succeeds(self, session_factory, now, make_user, make_beta_code):
        ana = make_user("ana@example.org")
        ben = make_user("ben@example.org")
        make_beta_code("ABC123")

        first, second = session_factory(), session_factory()
        try:
            # both requests see the code as unused before either one writes
            assert beta_codes.validate_code(first, "ABC123", now).is_used is False
            assert beta_codes.validate_code(second, "abc123", now).is_used is False

            beta_codes.redeem_code(first, "ABC123", "ana@example.org", now)
            with pytest.raises(AlreadyUsedError):
                beta_codes.redeem_code(second, "ABC123", "ben@example.org", now)
        finally:
            first.close()
            second.close()

        check = session_factory()
        try:
            invitation = check.query(BetaInvitationCode).filter_by(code="ABC123").one()
            assert invitation.used_by == ana.id
            assert check.get(User, ben.id).role == ROLE_USER
        finally:
            check.close()


class TestValidate:

    def test_valid_code(self, db, now, make_beta_code):
        make_beta_code("ABC123", organization="Ocean School")
        assert beta_codes.validate_code(db, "abc123", now).organization == "Ocean School"

    def test_validate_does_not_consume(self, db, now, make_beta_code):
        make_beta_code("ABC123")
        beta_codes.validate_code(db, "ABC123", now)
        beta_codes.validate_code(db, "ABC123", now)
        assert db.query(BetaInvitationCode).filter_by(is_used=True).count() == 0


class TestAdmin:

    def test_generate_batch(self, db, now, make_user):
        admin = make_user("admin@example.org", role=ROLE_ADMIN)
        codes = beta_codes.generate_codes(db, admin, "Ocean School", 5, now, expiration_months=2, notes="pilot")

        assert len({c.code for c in codes}) == 5
        for c in codes:
            assert len(c.code) == beta_codes.CODE_LENGTH
            assert c.code == c.code.upper()
            assert c.is_used is False
        stored = db.query(BetaInvitationCode).first()
        assert stored.expires_at.month == 5

    def test_generate_requires_admin(self, db, now, make_user):
        user = make_user("ana@example.org")
        with pytest.raises(ForbiddenError):
            beta_codes.generate_codes(db, user, "Ocean School", 5, now)

    @pytest.mark.parametrize("quantity", [0, 101])
    def test_generate_rejects_bad_quantity(self, db, now, make_user, quantity):
        admin = make_user("admin@example.org", role=ROLE_ADMIN)
        with pytest.raises(ValidationError):
            beta_codes.generate_codes(db, admin, "Ocean School", quantity, now)

    def test_list_with_stats(self, db, now, make_user, make_beta_code):
        admin = make_user("admin@example.org", role=ROLE_ADMIN)
        make_user("ana@example.org")
        make_beta_code("AAA111", organization="Ocean School")
        make_beta_code("BBB222", organization="Ocean School")
        make_beta_code("CCC333", organization="Forest Club")
        beta_codes.redeem_code(db, "AAA111", "ana@example.org", now)

        codes, stats = beta_codes.list_codes(db, admin)
        assert stats == {
            "total": 3,
            "used": 1,
            "unused": 2,
            "organizations": ["Forest Club", "Ocean School"],
        }

        codes, stats = beta_codes.list_codes(db, admin, organization="Ocean School", is_used=False)
        assert [c.code for c in codes] == ["BBB222"]
