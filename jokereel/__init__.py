"""
JokeReel - vertical short-form video composition.

Turns a narration script, a background clip, a thumbnail and an avatar into a
captioned 9:16 video with a synthesized voice track.
"""

__version__ = "0.3.0"
