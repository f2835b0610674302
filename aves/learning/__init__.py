"""Feedback capture and pattern learning.

Modules:
    feedback   - FeedbackCapture: validated, append-only reviewer events
    patterns   - PatternLearner: per-(species, term) positional statistics
    predictor  - PositionPredictor: adjust raw boxes with learned deltas
    guidance   - Append learned corrections/rejections to annotation prompts
"""
