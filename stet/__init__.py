"""stet: a terminal dashboard for daily tasks, a journal and two health/plant integrations."""

__version__ = "0.3.0"
