"""ordstack - run bitcoind and ord together for local inscription work."""

__version__ = "0.1.0"
