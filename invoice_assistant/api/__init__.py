# API package
from .routes import router
