"""
Currencies Module

This module holds the static currency metadata table for the expense
splitting service.

Features:
    - ISO 4217 code lookup with decimal-digit count
    - Minimum currency unit and rounding tolerance per currency
    - Percentage-space tolerance for percentage splits

Data Model:
    CurrencyRule (immutable):
        - code: string (e.g. "USD")
        - name: string
        - decimal_digits: int (0, 1, 2 or 3)
        - minimum_unit: Decimal (10^-decimal_digits)
        - rounding_tolerance: Decimal (one minimum unit)

Functions:
    get_currency_rule: Resolve a currency code to its CurrencyRule.
    rounding_tolerance: Amount tolerance for a currency.
    percentage_tolerance: Percentage tolerance for a currency.
    is_supported: Check whether a currency code is known.
    supported_currencies: List all known currency rules.
"""

from dataclasses import dataclass
from decimal import Decimal

from errors import UnknownCurrency


@dataclass(frozen=True)
class CurrencyRule:
    """Precision rules for a single currency."""

    code: str
    name: str
    decimal_digits: int

    @property
    def minimum_unit(self) -> Decimal:
        """Smallest representable amount, e.g. 0.01 for USD, 1 for JPY."""
        return Decimal(1).scaleb(-self.decimal_digits)

    @property
    def rounding_tolerance(self) -> Decimal:
        return self.minimum_unit

    @property
    def percentage_tolerance(self) -> Decimal:
        return Decimal(1).scaleb(-max(self.decimal_digits, 2))


# (code, decimal digits, name)
_CURRENCY_TABLE = [
    ("AED", 2, "United Arab Emirates Dirham"),
    ("AFN", 2, "Afghan Afghani"),
    ("ALL", 2, "Albanian Lek"),
    ("AMD", 2, "Armenian Dram"),
    ("ANG", 2, "Netherlands Antillean Guilder"),
    ("AOA", 2, "Angolan Kwanza"),
    ("ARS", 2, "Argentine Peso"),
    ("AUD", 2, "Australian Dollar"),
    ("AWG", 2, "Aruban Florin"),
    ("BAM", 2, "Bosnia and Herzegovina Convertible Mark"),
    ("BBD", 2, "Barbados Dollar"),
    ("BDT", 2, "Bangladeshi Taka"),
    ("BGN", 2, "Bulgarian Lev"),
    ("BHD", 3, "Bahraini Dinar"),
    ("BIF", 0, "Burundian Franc"),
    ("BMD", 2, "Bermudian Dollar"),
    ("BND", 2, "Brunei Dollar"),
    ("BOB", 2, "Bolivian Boliviano"),
    ("BRL", 2, "Brazilian Real"),
    ("BSD", 2, "Bahamian Dollar"),
    ("BTN", 2, "Bhutanese Ngultrum"),
    ("BWP", 2, "Botswana Pula"),
    ("BYN", 2, "Belarusian Ruble"),
    ("BZD", 2, "Belize Dollar"),
    ("CAD", 2, "Canadian Dollar"),
    ("CDF", 2, "Congolese Franc"),
    ("CHF", 2, "Swiss Franc"),
    ("CLP", 0, "Chilean Peso"),
    ("CNY", 2, "Chinese Yuan"),
    ("COP", 2, "Colombian Peso"),
    ("CRC", 2, "Costa Rican Colón"),
    ("CUP", 2, "Cuban Peso"),
    ("CVE", 2, "Cape Verdean Escudo"),
    ("CZK", 2, "Czech Koruna"),
    ("DJF", 0, "Djiboutian Franc"),
    ("DKK", 2, "Danish Krone"),
    ("DOP", 2, "Dominican Peso"),
    ("DZD", 2, "Algerian Dinar"),
    ("EGP", 2, "Egyptian Pound"),
    ("ETB", 2, "Ethiopian Birr"),
    ("EUR", 2, "Euro"),
    ("FJD", 2, "Fiji Dollar"),
    ("GBP", 2, "Pound Sterling"),
    ("GEL", 2, "Georgian Lari"),
    ("GHS", 2, "Ghanaian Cedi"),
    ("GMD", 2, "Gambian Dalasi"),
    ("GNF", 0, "Guinean Franc"),
    ("GTQ", 2, "Guatemalan Quetzal"),
    ("GYD", 2, "Guyanese Dollar"),
    ("HKD", 2, "Hong Kong Dollar"),
    ("HNL", 2, "Honduran Lempira"),
    ("HTG", 2, "Haitian Gourde"),
    ("HUF", 2, "Hungarian Forint"),
    ("IDR", 2, "Indonesian Rupiah"),
    ("ILS", 2, "Israeli New Shekel"),
    ("INR", 2, "Indian Rupee"),
    ("IQD", 3, "Iraqi Dinar"),
    ("IRR", 2, "Iranian Rial"),
    ("ISK", 0, "Icelandic Króna"),
    ("JMD", 2, "Jamaican Dollar"),
    ("JOD", 3, "Jordanian Dinar"),
    ("JPY", 0, "Japanese Yen"),
    ("KES", 2, "Kenyan Shilling"),
    ("KHR", 2, "Cambodian Riel"),
    ("KMF", 0, "Comoro Franc"),
    ("KRW", 0, "South Korean Won"),
    ("KWD", 3, "Kuwaiti Dinar"),
    ("KYD", 2, "Cayman Islands Dollar"),
    ("KZT", 2, "Kazakhstani Tenge"),
    ("LAK", 2, "Lao Kip"),
    ("LBP", 2, "Lebanese Pound"),
    ("LKR", 2, "Sri Lankan Rupee"),
    ("LRD", 2, "Liberian Dollar"),
    ("LSL", 2, "Lesotho Loti"),
    ("LYD", 3, "Libyan Dinar"),
    ("MAD", 2, "Moroccan Dirham"),
    ("MDL", 2, "Moldovan Leu"),
    ("MGA", 1, "Malagasy Ariary"),
    ("MKD", 2, "Macedonian Denar"),
    ("MMK", 2, "Myanma Kyat"),
    ("MOP", 2, "Macanese Pataca"),
    ("MRU", 1, "Mauritanian Ouguiya"),
    ("MUR", 2, "Mauritian Rupee"),
    ("MVR", 2, "Maldivian Rufiyaa"),
    ("MWK", 2, "Malawian Kwacha"),
    ("MXN", 2, "Mexican Peso"),
    ("MYR", 2, "Malaysian Ringgit"),
    ("MZN", 2, "Mozambican Metical"),
    ("NAD", 2, "Namibian Dollar"),
    ("NGN", 2, "Nigerian Naira"),
    ("NIO", 2, "Nicaraguan Córdoba"),
    ("NOK", 2, "Norwegian Krone"),
    ("NPR", 2, "Nepalese Rupee"),
    ("NZD", 2, "New Zealand Dollar"),
    ("OMR", 3, "Omani Rial"),
    ("PAB", 2, "Panamanian Balboa"),
    ("PEN", 2, "Peruvian Sol"),
    ("PGK", 2, "Papua New Guinean Kina"),
    ("PHP", 2, "Philippine Peso"),
    ("PKR", 2, "Pakistani Rupee"),
    ("PLN", 2, "Polish Złoty"),
    ("PYG", 0, "Paraguayan Guarani"),
    ("QAR", 2, "Qatari Riyal"),
    ("RON", 2, "Romanian Leu"),
    ("RSD", 2, "Serbian Dinar"),
    ("RUB", 2, "Russian Ruble"),
    ("RWF", 0, "Rwandan Franc"),
    ("SAR", 2, "Saudi Riyal"),
    ("SBD", 2, "Solomon Islands Dollar"),
    ("SCR", 2, "Seychellois Rupee"),
    ("SDG", 2, "Sudanese Pound"),
    ("SEK", 2, "Swedish Krona"),
    ("SGD", 2, "Singapore Dollar"),
    ("SHP", 2, "Saint Helena Pound"),
    ("SOS", 2, "Somali Shilling"),
    ("SRD", 2, "Surinamese Dollar"),
    ("STN", 2, "São Tomé and Príncipe Dobra"),
    ("SZL", 2, "Swazi Lilangeni"),
    ("THB", 2, "Thai Baht"),
    ("TJS", 2, "Tajikistani Somoni"),
    ("TMT", 2, "Turkmenistani Manat"),
    ("TND", 3, "Tunisian Dinar"),
    ("TOP", 2, "Tongan Paʻanga"),
    ("TRY", 2, "Turkish Lira"),
    ("TTD", 2, "Trinidad and Tobago Dollar"),
    ("TWD", 2, "New Taiwan Dollar"),
    ("TZS", 2, "Tanzanian Shilling"),
    ("UAH", 2, "Ukrainian Hryvnia"),
    ("UGX", 0, "Ugandan Shilling"),
    ("USD", 2, "United States Dollar"),
    ("UYU", 2, "Uruguayan Peso"),
    ("UZS", 2, "Uzbekistan Som"),
    ("VES", 2, "Venezuelan Bolívar Soberano"),
    ("VND", 0, "Vietnamese Dong"),
    ("XCD", 2, "East Caribbean Dollar"),
    ("XOF", 0, "CFA Franc BCEAO"),
    ("XPF", 0, "CFP Franc"),
    ("YER", 2, "Yemeni Rial"),
    ("ZAR", 2, "South African Rand"),
    ("ZMW", 2, "Zambian Kwacha"),
]

CURRENCIES = {
    code: CurrencyRule(code=code, name=name, decimal_digits=digits)
    for code, digits, name in _CURRENCY_TABLE
}


def _normalize_code(code) -> str:
    if not isinstance(code, str):
        return ""
    return code.strip().upper()


def get_currency_rule(code: str) -> CurrencyRule:
    """
    Resolve a currency code to its CurrencyRule.

    Args:
        code: ISO 4217 currency code (case-insensitive).

    Returns:
        CurrencyRule: Precision rules for the currency.

    Raises:
        UnknownCurrency: If the code is not in the table.
    """
    rule = CURRENCIES.get(_normalize_code(code))
    if rule is None:
        raise UnknownCurrency(f"Unknown currency code: {code}")
    return rule


def rounding_tolerance(code: str) -> Decimal:
    """Largest allowed difference between split total and expense amount."""
    return get_currency_rule(code).rounding_tolerance


def percentage_tolerance(code: str) -> Decimal:
    """Largest allowed difference between summed percentages and 100."""
    return get_currency_rule(code).percentage_tolerance


def is_supported(code: str) -> bool:
    return _normalize_code(code) in CURRENCIES


def supported_currencies() -> list[CurrencyRule]:
    return sorted(CURRENCIES.values(), key=lambda rule: rule.code)
