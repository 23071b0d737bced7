"""ESP32 relay — device connection hub bridged to an operator chat.

Quickstart::

    from relay.server import create_app
    app = create_app()          # reads RELAY_* / TELEGRAM_* from env

Operators address one device with ``esp32:<id>:<command>``; any other
chat text is relayed to every connected device.
"""

__version__ = "1.0.0"
