"""Browser-open capability.

Opening the system browser is fire-and-forget: the flow continues waiting on
the loopback listener whether or not a browser actually appeared, so the
user can always paste the printed link manually.
"""

from __future__ import annotations

import logging
import webbrowser
from typing import Callable

logger = logging.getLogger(__name__)

BrowserOpener = Callable[[str], object]


def open_external(url: str) -> bool:
    """Open *url* in the user's default browser.

    Returns:
        ``True`` if a browser was launched, ``False`` otherwise.
    """
    try:
        opened = webbrowser.open(url)
    except webbrowser.Error as exc:
        logger.warning("Could not open browser: %s", exc)
        return False
    if not opened:
        logger.warning("No browser available to open the authorization link")
    return bool(opened)
