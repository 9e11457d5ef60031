"""One-shot jobs intended for cron or manual invocation."""
