"""
edgelab: backtesting, optimization and out-of-sample validation for trading strategies.

The library logs through loguru but stays silent until
``edgelab.infrastructure.logging_setup.configure_logging`` is called.
"""

from loguru import logger

__version__ = "0.1.0"

logger.disable("edgelab")
