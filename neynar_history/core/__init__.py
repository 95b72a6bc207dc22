"""
Core utilities: error taxonomy and identity validation shared by the
observer, snapshot store, tracking registry and API server.
"""
