"""Studio bot HTTP process: draft endpoints and the Telegram webhook."""
