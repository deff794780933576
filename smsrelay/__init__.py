"""SMS relay API: token-authenticated outbound SMS through Twilio."""

__version__ = "1.0.0"
