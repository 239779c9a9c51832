"""Engine services used by handlers.

Handlers reach them through services.wiring.get_engine(), imported lazily so
that storage clients are only created on the first request of a container.
"""

# Do NOT import services here - use lazy loading in handlers instead
