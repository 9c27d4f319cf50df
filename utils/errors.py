class MirrorError(Exception):
    """Base class for all mirror errors"""


class TransientError(MirrorError):
    """A fetch or transcode step failed; the candidate is skipped and the batch continues"""


class FatalError(MirrorError):
    """Structural failure; continuing could corrupt the ledger or published record"""


class DeadlineReached(MirrorError):
    """A wait would run past the quit time of this run"""


class DailymotionError(MirrorError):
    def __init__(self, message, response=None):
        super().__init__(message)
        self.response = response or {}

    @property
    def reason(self):
        error = self.response.get('error') or {}
        if not isinstance(error, dict):
            return None
        return (error.get('error_data') or {}).get('reason')


class QuotaExceeded(DailymotionError):
    """Destination refused the upload because an upload limit was exceeded"""
