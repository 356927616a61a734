"""
JokeReel Services Module

Job orchestration across the composition stages.
"""

from .composition_pipeline import CompositionPipeline

__all__ = ['CompositionPipeline']
