from .captain_repository import CaptainRepository
from .config_repository import ConfigRepository
from .metrics_repository import CaptainMetricsRepository
from .offer_repository import OfferRepository
from .promo_repository import PromoRepository
from .ride_repository import RideRepository
from .task_repository import DispatchTaskRepository

__all__ = [
    "CaptainMetricsRepository",
    "CaptainRepository",
    "ConfigRepository",
    "DispatchTaskRepository",
    "OfferRepository",
    "PromoRepository",
    "RideRepository",
]
