"""
Frame compositing and stream recording for the vertical short.
"""

from .frame_clock import FrameClock
from .frame_compositor import FrameCompositor
from .stream_recorder import StreamRecorder

__all__ = ['FrameClock', 'FrameCompositor', 'StreamRecorder']
