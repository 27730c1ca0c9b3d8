"""Keep a wireless ADB link alive and deploy the newest APK from a directory."""

__version__ = "0.1.0"
