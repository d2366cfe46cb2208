"""Country defaults and the baseline generation config."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .models import GenerationConfig, ToleranceConfig


@dataclass(frozen=True)
class CountryDefaults:
    timezone: str
    currency: str


COUNTRY_DEFAULTS: dict[str, CountryDefaults] = {
    "US": CountryDefaults("America/New_York", "USD"),
    "GB": CountryDefaults("Europe/London", "GBP"),
    "UK": CountryDefaults("Europe/London", "GBP"),
    "DE": CountryDefaults("Europe/Berlin", "EUR"),
    "FR": CountryDefaults("Europe/Paris", "EUR"),
    "JP": CountryDefaults("Asia/Tokyo", "JPY"),
    "BR": CountryDefaults("America/Sao_Paulo", "BRL"),
    "AE": CountryDefaults("Asia/Dubai", "AED"),
    "AU": CountryDefaults("Australia/Sydney", "AUD"),
    "CA": CountryDefaults("America/Toronto", "CAD"),
    "SG": CountryDefaults("Asia/Singapore", "SGD"),
    "HK": CountryDefaults("Asia/Hong_Kong", "HKD"),
    "CH": CountryDefaults("Europe/Zurich", "CHF"),
    "NL": CountryDefaults("Europe/Amsterdam", "EUR"),
    "ES": CountryDefaults("Europe/Madrid", "EUR"),
    "IT": CountryDefaults("Europe/Rome", "EUR"),
    "IN": CountryDefaults("Asia/Kolkata", "INR"),
    "MX": CountryDefaults("America/Mexico_City", "MXN"),
}

DEFAULT_TOLERANCES = ToleranceConfig(count_tolerance=0, value_tolerance=0.005)


def country_defaults(country: str) -> CountryDefaults:
    return COUNTRY_DEFAULTS.get(country.upper(), COUNTRY_DEFAULTS["US"])


def build_config(data: dict[str, Any]) -> GenerationConfig:
    """Parse a config dict, filling timezone/currency from the country.

    Explicit ``timezone``/``currency`` keys win over the country defaults.
    """
    country = str(data.get("country") or "US").upper()
    defaults = country_defaults(country)
    merged = {
        "timezone": defaults.timezone,
        "currency": defaults.currency,
        **{k: v for k, v in data.items() if v is not None},
        "country": country,
    }
    return GenerationConfig.from_dict(merged)
