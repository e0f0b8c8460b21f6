"""cron-spine command-line interface (``cronspine``)."""
