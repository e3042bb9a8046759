# Copyright (C) 2025 grodz
#
# This file is part of Lull.
#
# Lull is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

"""Exceptions raised by the playback core."""


class LullError(Exception):
    """Base exception for Lull."""
    pass


class NotConnectedError(LullError):
    """Raised when an operation needs a voice connection and none can be made.

    Only raised when there is no live connection AND no remembered voice
    channel to reconnect to.
    """
    pass


class NothingPlayingError(LullError):
    """Raised when an operation needs a current item but the guild is idle."""
    pass


class ConfigurationError(LullError):
    """Raised when settings cannot be turned into a usable configuration."""
    pass
