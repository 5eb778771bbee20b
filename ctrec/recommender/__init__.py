"""Model module for the ctrec recommendation system.

This module contains the Collaborative Topic Regression model, its
simplex-constrained topic-mixture optimizer, the recommendation scorer and the
rating/document containers the model is trained on.
"""
