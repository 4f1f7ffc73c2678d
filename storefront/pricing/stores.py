"""
storefront/pricing/stores.py
----------------------------
Store / currency / vendor store-code normalisation.

    Store:      "US" | "CA"
    Currency:   "USD" | "CAD"
    Store code: "en_us" | "en_ca"   (the vendor's locale-style code)
"""
import re

US, CA = 'US', 'CA'
USD, CAD = 'USD', 'CAD'
EN_US, EN_CA = 'en_us', 'en_ca'

_JUNK = re.compile(r'[^A-Z0-9_]')


def _clean_upper(value) -> str:
    return _JUNK.sub('', str(value if value is not None else '').strip().upper())


def store_to_currency(value) -> str:
    """
    Normalise store-ish input to "USD" | "CAD".
    Accepts stores, locales, currencies and the legacy numeric store
    codes 9 (US) / 6 (CA). Unknown input defaults to USD.
    """
    v = _clean_upper(value)

    if v == CAD:
        return CAD
    if v == USD:
        return USD
    if v in ('CA', 'CANADA', 'EN_CA', '6') or v.endswith('_CA'):
        return CAD
    if v in ('US', 'USA', 'EN_US', '9') or v.endswith('_US'):
        return USD
    return USD


def currency_to_store_code(currency) -> str:
    return EN_CA if currency == CAD else EN_US


def store_to_store_code(value) -> str:
    return currency_to_store_code(store_to_currency(value))


def currency_to_store(value) -> str:
    return CA if store_to_currency(value) == CAD else US
