"""
Vocal performance analysis and coaching.

Pitch contours, note segmentation, alignment, diction and breath scoring,
coaching aggregation, drill sessions and a live feedback loop over decoded
mono audio.
"""

__version__ = "0.1.0"
