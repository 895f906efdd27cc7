# eld_integration_hub/providers/__init__.py

from eld_integration_hub.providers.base import (
    ConnectionVerification,
    ELDProvider,
    ProviderCapability,
    TokenSet,
)
from eld_integration_hub.providers.motive import MotiveProvider
from eld_integration_hub.providers.samsara import SamsaraProvider
from eld_integration_hub.providers.terminal import TerminalProvider

__all__: list[str] = [
    'ConnectionVerification',
    'ELDProvider',
    'MotiveProvider',
    'ProviderCapability',
    'SamsaraProvider',
    'TerminalProvider',
    'TokenSet',
]
