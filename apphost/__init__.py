"""HTTP application host.

Builds the request pipeline, mounts the API and upload directory, and runs the
listener together with the real-time and periodic-task subsystems.
"""

__version__ = "1.0.0"
