# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Per-sender email footers for sendmail and Postfix via the milter API."""

__version__ = "1.0.0"
