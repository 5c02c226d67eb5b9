"""Registry of payment provider clients keyed by payment method."""

from typing import Callable, Optional, Union

from services.bestowals_service.binance_pay_client import BinancePayClient
from services.bestowals_service.cryptomus_client import CryptomusClient
from services.bestowals_service.errors import ConfigurationError
from services.bestowals_service.models.enums import PaymentMethod

PaymentProviderClient = Union[BinancePayClient, CryptomusClient]

_DEFAULT_FACTORIES: dict[PaymentMethod, Callable[[], PaymentProviderClient]] = {
    PaymentMethod.BINANCE_PAY: BinancePayClient,
    PaymentMethod.CRYPTOMUS: CryptomusClient,
}


class ProviderClients:
    """Builds clients on first use, so a provider without credentials only
    fails the requests that actually need it."""

    def __init__(
        self,
        factories: Optional[
            dict[PaymentMethod, Callable[[], PaymentProviderClient]]
        ] = None,
    ):
        self._factories = factories or dict(_DEFAULT_FACTORIES)
        self._clients: dict[PaymentMethod, PaymentProviderClient] = {}

    def get(self, method: Union[PaymentMethod, str]) -> PaymentProviderClient:
        method = PaymentMethod(method)
        client = self._clients.get(method)
        if client is None:
            factory = self._factories.get(method)
            if factory is None:
                raise ConfigurationError(f"No client registered for {method.value}")
            client = factory()
            self._clients[method] = client
        return client


def get_provider_clients() -> ProviderClients:
    """FastAPI dependency; overridden in tests with fake clients."""
    return ProviderClients()
