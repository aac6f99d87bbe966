# clinic/routers/__init__.py
from . import health
from . import auth
from . import doctor
from . import appointments
from . import payments

__all__ = ["health", "auth", "doctor", "appointments", "payments"]
