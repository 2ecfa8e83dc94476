"""Pull fallback endpoint modules.

Internal to paysync; use :class:`paysync._api.pull.RestPullApi` or the
high-level client instead.
"""
