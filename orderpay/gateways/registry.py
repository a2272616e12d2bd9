from types import MappingProxyType
from typing import Mapping, Optional

import httpx

from orderpay.core.config import Settings, settings as default_settings
from orderpay.errors import UnsupportedGatewayError
from orderpay.gateways.base import PaymentGateway
from orderpay.gateways.myfatoorah import MyFatoorahGateway
from orderpay.gateways.tabby import TabbyGateway
from orderpay.gateways.tamara import TamaraGateway


class GatewayRegistry:
    """Name -> client lookup. Holds an immutable mapping, so it is safe to share across requests."""

    def __init__(self, gateways: Mapping[str, PaymentGateway]):
        self._gateways = MappingProxyType({name.lower(): gw for name, gw in gateways.items()})

    @classmethod
    def from_settings(cls, s: Settings = default_settings,
                      transport: Optional[httpx.BaseTransport] = None) -> "GatewayRegistry":
        opts = {"timeout": s.GATEWAY_TIMEOUT_SECONDS, "locale": s.GATEWAY_LOCALE, "transport": transport}
        return cls({
            MyFatoorahGateway.name: MyFatoorahGateway(s.MYFATOORAH, **opts),
            TabbyGateway.name: TabbyGateway(s.TABBY, **opts),
            TamaraGateway.name: TamaraGateway(s.TAMARA, **opts),
        })

    def resolve(self, name) -> PaymentGateway:
        key = str(getattr(name, "value", name) or "").lower()
        try:
            return self._gateways[key]
        except KeyError:
            raise UnsupportedGatewayError(str(name)) from None

    def is_supported(self, name) -> bool:
        return str(getattr(name, "value", name) or "").lower() in self._gateways

    def available_names(self) -> frozenset[str]:
        return frozenset(self._gateways)
