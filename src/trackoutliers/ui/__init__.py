"""
Dash UI package bootstrap.
"""
from .app import build_dash_app
