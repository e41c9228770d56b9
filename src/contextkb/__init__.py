"""contextkb — retrieval-augmented context resolution and ingestion engine."""

from loguru import logger

# Library code stays silent until an application configures a sink.
logger.disable("contextkb")

__version__ = "0.1.0"
