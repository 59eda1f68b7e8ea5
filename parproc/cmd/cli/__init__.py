"""
Sub functionalities of the parproc CLI
"""

from .config import config_app
