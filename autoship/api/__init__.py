# autoship API Package
from .app import create_app, build_runner
from .auth import verify_api_key, generate_api_key, is_auth_enabled

__all__ = ["create_app", "build_runner", "verify_api_key", "generate_api_key", "is_auth_enabled"]
