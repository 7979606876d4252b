"""Kindle Reading Sync - delegated authorization service.

Lets a browser-less Kindle extension sign in through GitHub by handing the
browser leg to a phone or PC:
- Authorization sessions polled by the device
- GitHub OAuth code and profile exchange
- Bearer token issuance, rotation and revocation
- Device to user binding
"""

__version__ = "1.0.0"
__author__ = "Kindle Reading Sync Contributors"
