from decimal import Decimal

from medication.services.variance import calculate_variance


def test_under_dose():
    variance = calculate_variance(Decimal('4'), Decimal('3'))
    assert variance == {'amount': Decimal('-1'), 'percentage': Decimal('-25.00'), 'has_variance': True}


def test_rounding_noise_is_not_a_variance():
    variance = calculate_variance(Decimal('4'), Decimal('4.005'))
    assert variance['has_variance'] is False
    assert variance['percentage'] == Decimal('0.13')


def test_zero_expected_dose_has_no_percentage():
    variance = calculate_variance(Decimal('0'), Decimal('2'))
    assert variance['percentage'] is None
    assert variance['has_variance'] is True


def test_missing_values():
    assert calculate_variance(None, Decimal('2'))['has_variance'] is False
    assert calculate_variance(Decimal('2'), None)['amount'] is None


def test_threshold_is_configurable(settings):
    settings.DOSE_VARIANCE_THRESHOLD = 0.5
    assert calculate_variance(Decimal('4'), Decimal('4.25'))['has_variance'] is False
    assert calculate_variance(Decimal('4'), Decimal('4.25'), threshold=Decimal('0.1'))['has_variance'] is True
