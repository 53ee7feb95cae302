"""Typed configuration for django-ticketing.

Reads a single ``DJANGO_TICKETING`` dict from Django settings and exposes it as
composed, frozen dataclasses with sensible defaults.

Usage::

    from django_ticketing.settings import get_config

    config = get_config()
    config.stripe.secret_key
    config.tickets.number_prefix
    config.currency
"""

import functools
from collections.abc import Mapping
from dataclasses import dataclass, field

from django.conf import settings
from django.test.signals import setting_changed


@dataclass(frozen=True, slots=True)
class StripeConfig:
    """Stripe Checkout configuration."""

    secret_key: str | None = None
    publishable_key: str | None = None
    api_version: str = "2024-12-18"
    timeout_seconds: float = 10.0
    max_network_retries: int = 2


@dataclass(frozen=True, slots=True)
class TicketConfig:
    """Ticket numbering and QR payload configuration."""

    number_prefix: str = "TKT"
    qr_salt: str = "django_ticketing.tickets.qr"
    qr_box_size: int = 8


@dataclass(frozen=True, slots=True)
class TicketingConfig:
    """Top-level django-ticketing configuration."""

    stripe: StripeConfig = field(default_factory=StripeConfig)
    tickets: TicketConfig = field(default_factory=TicketConfig)
    currency: str = "USD"
    currency_symbol: str = "$"
    reconcile_after_minutes: int = 30


@functools.lru_cache(maxsize=1)
def get_config() -> TicketingConfig:
    """Build and return the ticketing configuration.

    Reads ``settings.DJANGO_TICKETING`` (a plain dict) and returns a frozen
    :class:`TicketingConfig`.  The result is cached; the cache is cleared
    automatically when Django's ``setting_changed`` signal fires (e.g. inside
    ``override_settings``).
    """
    raw = getattr(settings, "DJANGO_TICKETING", {})
    if not isinstance(raw, Mapping):
        msg = "DJANGO_TICKETING must be a mapping (dict-like object)"
        raise TypeError(msg)
    raw_data = dict(raw)

    stripe_data = raw_data.pop("stripe", {})
    tickets_data = raw_data.pop("tickets", {})
    if not isinstance(stripe_data, Mapping):
        msg = "DJANGO_TICKETING['stripe'] must be a mapping (dict-like object)"
        raise TypeError(msg)
    if not isinstance(tickets_data, Mapping):
        msg = "DJANGO_TICKETING['tickets'] must be a mapping (dict-like object)"
        raise TypeError(msg)

    config = TicketingConfig(
        stripe=StripeConfig(**dict(stripe_data)),
        tickets=TicketConfig(**dict(tickets_data)),
        **raw_data,
    )
    _validate_ticketing_config(config)
    return config


def _validate_ticketing_config(config: TicketingConfig) -> None:
    """Validate high-impact configuration values with clear error messages."""
    if not isinstance(config.currency, str) or not config.currency.strip():
        msg = "DJANGO_TICKETING['currency'] must be a non-empty string"
        raise ValueError(msg)
    if not isinstance(config.currency_symbol, str) or not config.currency_symbol.strip():
        msg = "DJANGO_TICKETING['currency_symbol'] must be a non-empty string"
        raise ValueError(msg)
    if not isinstance(config.reconcile_after_minutes, int) or config.reconcile_after_minutes <= 0:
        msg = "DJANGO_TICKETING['reconcile_after_minutes'] must be a positive integer"
        raise ValueError(msg)
    timeout = config.stripe.timeout_seconds
    if not isinstance(timeout, (int, float)) or timeout <= 0:
        msg = "DJANGO_TICKETING['stripe']['timeout_seconds'] must be a positive number"
        raise ValueError(msg)
    if not isinstance(config.stripe.max_network_retries, int) or config.stripe.max_network_retries < 0:
        msg = "DJANGO_TICKETING['stripe']['max_network_retries'] must be a non-negative integer"
        raise ValueError(msg)
    prefix = config.tickets.number_prefix
    if not isinstance(prefix, str) or not prefix.strip() or not prefix.isalnum():
        msg = "DJANGO_TICKETING['tickets']['number_prefix'] must be a non-empty alphanumeric string"
        raise ValueError(msg)
    if not isinstance(config.tickets.qr_salt, str) or not config.tickets.qr_salt:
        msg = "DJANGO_TICKETING['tickets']['qr_salt'] must be a non-empty string"
        raise ValueError(msg)
    if not isinstance(config.tickets.qr_box_size, int) or config.tickets.qr_box_size <= 0:
        msg = "DJANGO_TICKETING['tickets']['qr_box_size'] must be a positive integer"
        raise ValueError(msg)


def _clear_config_cache(*, setting: str, **kwargs: object) -> None:  # noqa: ARG001
    """Clear the cached config when Django settings change during tests."""
    if setting == "DJANGO_TICKETING":
        get_config.cache_clear()


setting_changed.connect(_clear_config_cache, dispatch_uid="django_ticketing.settings.clear_config_cache")
