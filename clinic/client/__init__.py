from .poller import Poller
from .session import ClinicAPIError, ClinicSession

__all__ = ["ClinicAPIError", "ClinicSession", "Poller"]
