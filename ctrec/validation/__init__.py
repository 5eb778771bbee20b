"""Evaluation module for ctrec.

Provides the ranking metrics and the cross-validation harness that trains one
model per fold and scores its recommendation lists against held-out ratings.
"""
