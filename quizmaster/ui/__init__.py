"""Qt integration for desktop hosts of quiz sessions."""

from .qt_timer import QtTimer

__all__ = ["QtTimer"]
