# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""tufclient: a client for The Update Framework
"""

# This value is used in the requests user agent.
__version__ = "1.0.0"

import tufclient.api
import tufclient.client

__all__ = [
    tufclient.api.__name__,
    tufclient.client.__name__,
]
