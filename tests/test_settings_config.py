import pytest
from django.test import override_settings

from django_ticketing.settings import get_config


def test_get_config_defaults() -> None:
    with override_settings(DJANGO_TICKETING={}):
        config = get_config()

    assert config.currency == "USD"
    assert config.currency_symbol == "$"
    assert config.reconcile_after_minutes == 30
    assert config.stripe.secret_key is None
    assert config.stripe.timeout_seconds == 10.0
    assert config.stripe.max_network_retries == 2
    assert config.tickets.number_prefix == "TKT"
    assert config.tickets.qr_box_size == 8


def test_get_config_reads_nested_sections() -> None:
    with override_settings(
        DJANGO_TICKETING={
            "stripe": {"secret_key": "sk_test_x", "timeout_seconds": 3},
            "tickets": {"number_prefix": "EVT"},
            "currency": "EUR",
        },
    ):
        config = get_config()

    assert config.stripe.secret_key == "sk_test_x"
    assert config.stripe.timeout_seconds == 3
    assert config.tickets.number_prefix == "EVT"
    assert config.currency == "EUR"


def test_get_config_rejects_non_mapping_root() -> None:
    with override_settings(DJANGO_TICKETING=["bad"]):
        with pytest.raises(TypeError, match="must be a mapping"):
            get_config()


def test_get_config_rejects_non_mapping_nested_sections() -> None:
    with override_settings(DJANGO_TICKETING={"stripe": ["bad"]}):
        with pytest.raises(TypeError, match=r"DJANGO_TICKETING\['stripe'\] must be a mapping"):
            get_config()

    with override_settings(DJANGO_TICKETING={"tickets": "bad"}):
        with pytest.raises(TypeError, match=r"DJANGO_TICKETING\['tickets'\] must be a mapping"):
            get_config()


def test_get_config_validates_primitive_values() -> None:
    with override_settings(DJANGO_TICKETING={"currency": ""}):
        with pytest.raises(ValueError, match="currency"):
            get_config()

    with override_settings(DJANGO_TICKETING={"currency_symbol": " "}):
        with pytest.raises(ValueError, match="currency_symbol"):
            get_config()

    with override_settings(DJANGO_TICKETING={"reconcile_after_minutes": 0}):
        with pytest.raises(ValueError, match="positive integer"):
            get_config()

    with override_settings(DJANGO_TICKETING={"stripe": {"timeout_seconds": 0}}):
        with pytest.raises(ValueError, match="timeout_seconds"):
            get_config()

    with override_settings(DJANGO_TICKETING={"stripe": {"max_network_retries": -1}}):
        with pytest.raises(ValueError, match="max_network_retries"):
            get_config()

    with override_settings(DJANGO_TICKETING={"tickets": {"number_prefix": "TK-T"}}):
        with pytest.raises(ValueError, match="number_prefix"):
            get_config()

    with override_settings(DJANGO_TICKETING={"tickets": {"qr_salt": ""}}):
        with pytest.raises(ValueError, match="qr_salt"):
            get_config()

    with override_settings(DJANGO_TICKETING={"tickets": {"qr_box_size": 0}}):
        with pytest.raises(ValueError, match="qr_box_size"):
            get_config()


def test_get_config_rejects_unknown_keys() -> None:
    with override_settings(DJANGO_TICKETING={"no_such_option": True}):
        with pytest.raises(TypeError):
            get_config()


def test_get_config_cache_clears_on_setting_changed() -> None:
    with override_settings(DJANGO_TICKETING={"currency": "USD"}):
        assert get_config().currency == "USD"

    with override_settings(DJANGO_TICKETING={"currency": "EUR"}):
        assert get_config().currency == "EUR"
