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

"""
Context Managers for Safe State Management

Provides context managers that guarantee cleanup even when errors occur.
"""

from contextlib import contextmanager
from typing import Any

from core.playback import Transition


@contextmanager
def transition_guard(controller: Any, transition: Transition):
    """
    Mark the controller as mid-transition while it swaps streams by hand.

    Usage:
        with transition_guard(controller, Transition.ADVANCING):
            controller.connection.stop_playing()  # Won't auto-advance
            controller.connection.play(...)

    Any end-of-stream event dispatched while the guard is up is a side effect
    of the deliberate stop and gets dropped. The active playback session is
    cancelled on entry so end events delivered after the guard comes down are
    dropped too.

    Args:
        controller: PlaybackController with a _transition attribute
        transition: Why the stream is being replaced
    """
    cancel_session = getattr(controller, "cancel_active_session", None)
    if callable(cancel_session):
        cancel_session()

    # Preserve previous state to handle nested calls correctly
    prev = getattr(controller, "_transition", Transition.IDLE)
    controller._transition = transition
    try:
        yield
    finally:
        controller._transition = prev
