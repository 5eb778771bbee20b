"""ctrec: Collaborative Topic Regression recommender.

This package trains latent-factor recommendation models that combine implicit
user-item feedback with topic structure extracted from item text, and
evaluates their recommendation quality with cross-validation.

Modules:
    recommender: CTR model, simplex optimizer, scoring and data collaborators
    validation: cross-validation harness and ranking metrics
"""

__version__ = "0.1.0"
