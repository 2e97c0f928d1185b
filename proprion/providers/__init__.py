from .base import ProviderClient
from .exoscale import ExoscaleClient
from .scaleway import ScalewayClient

__all__ = ["ProviderClient", "ExoscaleClient", "ScalewayClient"]
