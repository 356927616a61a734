"""
Unit Tests

Tests for individual components and functions:
- core/: caption timing, frame compositing, frame pacing, stream recording
- media/: asset loading, ffmpeg helpers, engine acquisition, transcoding
- services/: composition pipeline orchestration
"""
