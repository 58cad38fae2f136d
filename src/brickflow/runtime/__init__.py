"""Brickflow runtime - the pipeline reducer and its collaborators.

The reducer runs brick pipelines step by step, rendering each step's
config against the execution context and folding outputs according to
the pipeline's API version.
"""
