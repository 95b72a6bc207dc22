"""
API server package: HTTP interface over the score service.

Exposes current scores, score history and the tracked set to clients, plus
the sweep trigger for an external cron.
"""
