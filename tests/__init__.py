"""
JokeReel Test Suite

- unit/: Unit tests for individual components, with ffmpeg and process
  boundaries mocked
"""
