"""
API blueprints for the BillFree loyalty app.
"""
from .loyalty import loyalty_bp
from .settings import settings_bp

__all__ = ['loyalty_bp', 'settings_bp']
