# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Run the relay with ``python -m smtp_to_telegram``."""

import sys

from smtp_to_telegram.server import main


if __name__ == "__main__":
    sys.exit(main())
