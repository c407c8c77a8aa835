from decimal import Decimal

import pytest

from dentlink.core.errors import InvalidConfig, ValidationError
from dentlink.models.user import User
from dentlink.services.commission import CommissionConfig, compute_settlement
from dentlink.services.settings_service import commission_config_for_doctor


def test_percentage_split():
    s = compute_settlement(1000, CommissionConfig.of("percentage", 10))
    assert s.commission_amount == Decimal("100.00")
    assert s.net_income == Decimal("900.00")


def test_fixed_split_ignores_cost():
    s = compute_settlement(1000, CommissionConfig.of("fixed", 150))
    assert s.commission_amount == Decimal("150.00")
    assert s.net_income == Decimal("850.00")

    s = compute_settlement("4500", CommissionConfig.of("fixed", 150))
    assert s.commission_amount == Decimal("150.00")
    assert s.net_income == Decimal("4350.00")


def test_rounds_half_up_to_cents():
    # 333.33 * 12.5% = 41.66625
    s = compute_settlement("333.33", CommissionConfig.of("percentage", "12.5"))
    assert s.commission_amount == Decimal("41.67")
    assert s.net_income == Decimal("291.66")
    assert s.commission_amount + s.net_income == s.cost


@pytest.mark.parametrize("type_, rate", [
    ("percentage", -1),
    ("fixed", -5),
    ("percentage", "100.01"),
    ("flat", 10),
    ("percentage", "abc"),
])
def test_invalid_config(type_, rate):
    with pytest.raises(InvalidConfig):
        compute_settlement(1000, CommissionConfig.of(type_, rate))


def test_fixed_commission_above_cost_is_rejected():
    with pytest.raises(InvalidConfig):
        compute_settlement(100, CommissionConfig.of("fixed", 150))


def test_cost_must_be_positive():
    with pytest.raises(ValidationError):
        compute_settlement(0, CommissionConfig.of("percentage", 10))


def test_doctor_override_falls_back_per_field(session_factory, users):
    with session_factory() as db:
        doctor = db.get(User, users.doctor_a)

        cfg = commission_config_for_doctor(db, doctor)
        assert cfg == CommissionConfig("percentage", Decimal("10"))

        doctor.commission_rate = Decimal("15")
        cfg = commission_config_for_doctor(db, doctor)
        assert cfg.type == "percentage"
        assert cfg.rate == Decimal("15")

        doctor.commission_type = "fixed"
        doctor.commission_rate = Decimal("200")
        s = compute_settlement(5000, commission_config_for_doctor(db, doctor))
        assert s.commission_amount == Decimal("200.00")
        db.rollback()
