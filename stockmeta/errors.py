class StockMetaError(Exception):
    """Base class for all stockmeta errors"""


class ConfigurationError(StockMetaError):
    """Run cannot start: missing keys, nothing ready, or an impossible batch size"""


class PreprocessingError(StockMetaError):
    """File could not be turned into a thumbnail and API payload"""


class GenerationError(StockMetaError):
    """One generation attempt against the model failed"""


class SafetyBlockedError(GenerationError):
    """Model returned no text because of its safety settings"""


class InvalidResponseError(GenerationError):
    """Model returned an empty or malformed body"""


class GenerationCancelled(StockMetaError):
    """Retry loop abandoned because a stop was requested"""


class RegenerationError(StockMetaError):
    """A single result could not be regenerated"""


class ExportError(StockMetaError):
    """Nothing to export for the selected mode"""
