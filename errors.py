"""
Error types raised by the channel monitor.

Provider failures are converted to these at the YouTube API edge so the
refresh orchestrator and the HTTP layer only deal with one taxonomy.
"""


class ChannelMonitorError(Exception):
    """Base class for every error raised by this project"""


class ChannelNotFound(ChannelMonitorError):
    """The channel no longer exists or is unavailable upstream"""

    def __init__(self, channel_id, message=None):
        self.channel_id = channel_id
        super().__init__(message or f"Channel not found: {channel_id}")


class RateLimited(ChannelMonitorError):
    """Every API key is out of quota or the provider throttled us"""


class UpstreamError(ChannelMonitorError):
    """Any other provider failure"""


class StorageQuotaExceeded(ChannelMonitorError):
    """Local storage refused a write because it is full"""


class InvalidChannelReference(ChannelMonitorError):
    """A raw channel reference could not be parsed"""


class ChannelAlreadyMonitored(ChannelMonitorError):
    def __init__(self, channel_id):
        self.channel_id = channel_id
        super().__init__(f"Channel already being monitored: {channel_id}")
