# syncbridge/services/currency.py
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict

from syncbridge.core.exceptions import ValidationError

logger = logging.getLogger(__name__)


@dataclass
class ConversionResult:
    original_amount: float
    original_currency: str
    converted_amount: float
    base_currency: str
    exchange_rate: float


class CurrencyService(ABC):
    """Converts order totals into the ERP's base currency."""

    @abstractmethod
    async def convert(self, amount: float, from_currency: str, to_currency: str) -> ConversionResult:
        pass


class StaticRateCurrencyService(CurrencyService):
    """
    Fixed rates from configuration, expressed as units of base currency per
    unit of foreign currency. Live rate feeds plug in behind CurrencyService.
    """

    def __init__(self, base_currency: str, rates: Dict[str, float]):
        self.base_currency = base_currency.upper()
        self.rates = {code.upper(): float(rate) for code, rate in rates.items()}
        self.rates[self.base_currency] = 1.0

    def _rate(self, currency: str) -> float:
        try:
            return self.rates[currency.upper()]
        except KeyError:
            raise ValidationError(f"No exchange rate configured for {currency}")

    async def convert(self, amount: float, from_currency: str, to_currency: str) -> ConversionResult:
        rate = self._rate(from_currency) / self._rate(to_currency)
        converted = round(float(amount) * rate, 2)
        logger.debug(f"Converted {amount} {from_currency} -> {converted} {to_currency} @ {rate}")
        return ConversionResult(
            original_amount=float(amount),
            original_currency=from_currency.upper(),
            converted_amount=converted,
            base_currency=to_currency.upper(),
            exchange_rate=rate,
        )
