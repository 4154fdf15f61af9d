"""rowcast — PostgreSQL change relay over WebSockets.

Pushes row-level changes from watched tables to every connected client
and lets clients run insert/select/update/delete requests over the
same socket.
"""

__version__ = "0.1.0"
